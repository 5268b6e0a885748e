"""CLI tests for login and config commands."""

from __future__ import annotations

from unittest import mock

from api.dwlf_client import DEFAULT_API_URL, KeyValidation
from config import Config

import dwlf_cli

NEW_KEY = "dwlf_sk_brand_new_key_1234"


def test_config_set_persists_value(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["config", "set", "outputFormat", "json"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "outputFormat set to json" in result.output
    assert Config().output_format == "json"


def test_config_set_rejects_unknown_timeframe(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["config", "set", "defaultTimeframe", "2h"])

    assert result.exit_code == 1
    assert "Invalid timeframe" in result.output


def test_config_set_masks_api_key(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["config", "set", "apiKey", NEW_KEY], catch_exceptions=False)

    assert result.exit_code == 0
    assert NEW_KEY not in result.output
    assert Config().api_key == NEW_KEY


def test_config_show_without_key(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["config", "show"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "not configured" in result.output
    assert "outputFormat" in result.output


def test_config_list_keys(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["config", "list-keys"], catch_exceptions=False)
    assert "defaultSymbols" in result.output


def test_config_reset_keeps_api_key(runner) -> None:
    config = Config()
    config.save_api_key(NEW_KEY)
    config.set_value("outputFormat", "csv")

    result = runner.invoke(dwlf_cli.cli, ["config", "reset", "--confirm"], catch_exceptions=False)

    assert result.exit_code == 0
    reloaded = Config()
    assert reloaded.output_format == "table"
    assert reloaded.api_key == NEW_KEY


def test_config_reset_can_be_cancelled(runner) -> None:
    Config().set_value("outputFormat", "csv")

    result = runner.invoke(dwlf_cli.cli, ["config", "reset"], input="n\n", catch_exceptions=False)

    assert "Reset cancelled" in result.output
    assert Config().output_format == "csv"


def test_login_saves_validated_key(runner) -> None:
    validation = KeyValidation(valid=True, user_info={"status": "Validated successfully", "portfolios": 2})
    with mock.patch("cli.account.validate_api_key", return_value=validation) as validate:
        result = runner.invoke(dwlf_cli.cli, ["login"], input=f"{NEW_KEY}\n", catch_exceptions=False)

    assert result.exit_code == 0
    assert "API key is valid" in result.output
    assert "Portfolios: 2" in result.output
    validate.assert_called_once_with(NEW_KEY, DEFAULT_API_URL)
    assert Config().api_key == NEW_KEY


def test_login_rejected_key_is_not_saved(runner) -> None:
    validation = KeyValidation(valid=False, error="Invalid API key (invalid credentials)")
    with mock.patch("cli.account.validate_api_key", return_value=validation):
        result = runner.invoke(dwlf_cli.cli, ["login"], input="dwlf_sk_bad\n")

    assert result.exit_code == 1
    assert "validation failed" in result.output
    assert Config().api_key is None


def test_login_keeps_existing_key_when_overwrite_declined(runner) -> None:
    Config().save_api_key(NEW_KEY)

    with mock.patch("cli.account.validate_api_key") as validate:
        result = runner.invoke(dwlf_cli.cli, ["login"], input="n\n", catch_exceptions=False)

    assert result.exit_code == 0
    assert "Keeping the existing API key" in result.output
    validate.assert_not_called()


def test_login_validate_without_key_fails(runner) -> None:
    result = runner.invoke(dwlf_cli.cli, ["login", "--validate"])

    assert result.exit_code == 1
    assert "No API key configured" in result.output


def test_login_validate_uses_environment_key(runner, monkeypatch) -> None:
    monkeypatch.setenv("DWLF_API_KEY", NEW_KEY)
    validation = KeyValidation(valid=True, user_info={"status": "Validated successfully"})
    with mock.patch("cli.account.validate_api_key", return_value=validation) as validate:
        result = runner.invoke(dwlf_cli.cli, ["login", "--validate"], catch_exceptions=False)

    assert result.exit_code == 0
    validate.assert_called_once_with(NEW_KEY, DEFAULT_API_URL)


def test_login_show_config_reports_environment_source(runner, monkeypatch) -> None:
    monkeypatch.setenv("DWLF_API_KEY", NEW_KEY)

    result = runner.invoke(dwlf_cli.cli, ["login", "--show-config"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "DWLF_API_KEY" in result.output
    assert NEW_KEY not in result.output
