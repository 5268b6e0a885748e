"""Tests for configuration loading, validation and persistence."""

from __future__ import annotations

import json
import os
import stat

import pytest

from api.dwlf_client import DEFAULT_API_URL
from config import Config, ConfigError, default_config_dir, mask_api_key


def test_defaults_without_config_file(isolated_config) -> None:
    config = Config()

    assert config.config_dir == isolated_config
    assert config.api_key is None
    assert config.api_url == DEFAULT_API_URL
    assert config.output_format == "table"
    assert config.default_timeframe == "daily"
    assert config.max_retries == 3
    assert not config.has_credentials()
    assert config.api_key_source() is None


def test_default_config_dir_honours_override(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DWLF_CONFIG_DIR", str(tmp_path / "custom"))
    assert default_config_dir() == tmp_path / "custom"


def test_save_api_key_writes_private_file(isolated_config) -> None:
    config = Config()
    config.save_api_key("dwlf_sk_abcdefghijklmnop", api_url="https://staging.dwlf.co.uk/")

    data = json.loads(config.config_file.read_text(encoding="utf-8"))
    assert data["apiKey"] == "dwlf_sk_abcdefghijklmnop"
    assert data["apiUrl"] == "https://staging.dwlf.co.uk"
    assert "version" in data
    assert stat.S_IMODE(config.config_file.stat().st_mode) == 0o600
    assert stat.S_IMODE(isolated_config.stat().st_mode) == 0o700

    reloaded = Config()
    assert reloaded.api_key == "dwlf_sk_abcdefghijklmnop"
    assert reloaded.api_key_source() == "config"


def test_save_api_key_opens_file_owner_only(isolated_config, monkeypatch) -> None:
    opened = []
    real_open = os.open

    def _recording_open(path, flags, mode=0o777, *args, **kwargs):
        opened.append((str(path), mode))
        return real_open(path, flags, mode, *args, **kwargs)

    monkeypatch.setattr(os, "open", _recording_open)

    config = Config()
    config.save_api_key("dwlf_sk_abcdefghijklmnop")

    assert (str(config.config_file), 0o600) in opened


def test_save_api_key_tightens_existing_loose_file(isolated_config) -> None:
    isolated_config.mkdir(parents=True, exist_ok=True)
    config_file = isolated_config / "config.json"
    config_file.write_text("{}", encoding="utf-8")
    config_file.chmod(0o644)

    config = Config()
    config.save_api_key("dwlf_sk_abcdefghijklmnop")

    assert stat.S_IMODE(config_file.stat().st_mode) == 0o600
    assert json.loads(config_file.read_text(encoding="utf-8"))["apiKey"] == "dwlf_sk_abcdefghijklmnop"


def test_save_api_key_rejects_wrong_prefix() -> None:
    with pytest.raises(ConfigError):
        Config().save_api_key("sk_live_123")


def test_environment_overrides_config_file(monkeypatch) -> None:
    config = Config()
    config.save_api_key("dwlf_sk_from_config_file")
    monkeypatch.setenv("DWLF_API_KEY", "dwlf_sk_from_environment")
    monkeypatch.setenv("DWLF_MAX_RETRIES", "5")

    reloaded = Config()
    assert reloaded.api_key == "dwlf_sk_from_environment"
    assert reloaded.api_key_source() == "environment"
    assert reloaded.max_retries == 5


def test_set_value_validates_and_persists() -> None:
    config = Config()

    assert config.set_value("defaultTimeframe", "4h") == "4h"
    assert config.set_value("outputFormat", "JSON") == "json"
    assert config.set_value("defaultSymbols", "btc, aapl,ethusd") == ["BTC-USD", "AAPL", "ETH-USD"]

    reloaded = Config()
    assert reloaded.default_timeframe == "4h"
    assert reloaded.output_format == "json"
    assert reloaded.default_symbols == ["BTC-USD", "AAPL", "ETH-USD"]


@pytest.mark.parametrize(
    "key, value, message",
    [
        ("colour", "red", "Unknown configuration key: colour"),
        ("defaultTimeframe", "2h", "Invalid timeframe"),
        ("outputFormat", "xml", "Invalid output format"),
        ("apiUrl", "ftp://dwlf", "Invalid API URL"),
        ("apiKey", "nope", "dwlf_sk_"),
    ],
)
def test_set_value_rejects_invalid_values(key: str, value: str, message: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        Config().set_value(key, value)
    assert message in str(excinfo.value)


def test_reset_keeps_api_key_by_default() -> None:
    config = Config()
    config.save_api_key("dwlf_sk_keep_me_please")
    config.set_value("outputFormat", "csv")

    config.reset()
    assert config.api_key == "dwlf_sk_keep_me_please"
    assert config.output_format == "table"

    config.reset(keep_api_key=False)
    assert config.api_key is None


def test_invalid_json_falls_back_to_defaults(isolated_config) -> None:
    isolated_config.mkdir(parents=True)
    (isolated_config / "config.json").write_text("{not json", encoding="utf-8")

    config = Config()
    assert config.api_key is None
    assert config.api_url == DEFAULT_API_URL


def test_non_numeric_settings_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("DWLF_TIMEOUT", "soon")
    monkeypatch.setenv("DWLF_MAX_RETRIES", "many")
    config = Config()
    assert config.timeout == 30.0
    assert config.max_retries == 3


def test_client_settings_reflect_config(monkeypatch) -> None:
    monkeypatch.setenv("DWLF_API_KEY", "dwlf_sk_settings")
    monkeypatch.setenv("DWLF_RETRY_DELAY", "0.5")
    settings = Config().client_settings()

    assert settings.api_key == "dwlf_sk_settings"
    assert settings.retry_delay == 0.5
    assert settings.rate_limit is None
    assert settings.with_rate_limit(10, 1.0).rate_limit.max_requests == 10


def test_mask_api_key() -> None:
    assert mask_api_key(None) == "(not set)"
    assert mask_api_key("short") == "*****"
    masked = mask_api_key("dwlf_sk_abcdefghijklmnop")
    assert masked.startswith("dwlf_sk_abcd")
    assert masked.endswith("mnop")
    assert "efghijkl" not in masked
