"""
Configuration management for DWLF CLI.

Settings resolve with Env → .env → ~/.dwlf/config.json → defaults precedence.
The JSON file also stores the API key and display preferences written by
``dwlf login`` and ``dwlf config set``.

Updates: v0.1.0 - 2026-02-02 - Credential store with masked key display.
Updates: v0.1.1 - 2026-02-12 - Validated ``config set`` keys and reset keeping the API key.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from api.dwlf_client import API_KEY_PREFIX, DEFAULT_API_URL, ClientSettings
from api.symbols import normalize_symbols

logger = logging.getLogger(__name__)

CONFIG_VERSION = "1.0.0"
CONFIG_DIR_ENV = "DWLF_CONFIG_DIR"

VALID_TIMEFRAMES = ("1m", "5m", "15m", "1h", "4h", "daily", "weekly", "monthly")
VALID_OUTPUT_FORMATS = ("table", "compact", "json", "csv")

SETTABLE_KEYS: Dict[str, str] = {
    "apiKey": "DWLF API key (must start with dwlf_sk_)",
    "apiUrl": "DWLF API base URL",
    "defaultSymbols": "Comma-separated symbols used when none are given",
    "defaultTimeframe": f"Default chart timeframe ({', '.join(VALID_TIMEFRAMES)})",
    "outputFormat": f"Default output format ({', '.join(VALID_OUTPUT_FORMATS)})",
}


class ConfigError(ValueError):
    """Raised when a configuration value is rejected."""


def default_config_dir() -> Path:
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".dwlf"


def mask_api_key(api_key: Optional[str]) -> str:
    """Return a display-safe version of ``api_key``."""

    if not api_key:
        return "(not set)"
    if len(api_key) <= 8:
        return "*" * len(api_key)
    hidden = max(len(api_key) - 16, 4)
    return f"{api_key[:12]}{'*' * hidden}{api_key[-4:]}"


class Config:
    """Load configuration with Env → .env → config.json → defaults precedence."""

    _CONFIG_KEY_MAPPING: Dict[str, tuple[str, ...]] = {
        "DWLF_API_KEY": ("apiKey",),
        "DWLF_API_URL": ("apiUrl",),
        "DWLF_LOG_LEVEL": ("logLevel",),
        "DWLF_TIMEOUT": ("timeout",),
        "DWLF_MAX_RETRIES": ("maxRetries",),
        "DWLF_RETRY_DELAY": ("retryDelay",),
        "DWLF_MAX_RETRY_DELAY": ("maxRetryDelay",),
        "DWLF_BACKOFF_MULTIPLIER": ("backoffMultiplier",),
        "DWLF_OUTPUT_FORMAT": ("outputFormat",),
        "DWLF_DEFAULT_TIMEFRAME": ("defaultTimeframe",),
    }

    _DEFAULTS: Dict[str, Any] = {
        "DWLF_API_KEY": None,
        "DWLF_API_URL": DEFAULT_API_URL,
        "DWLF_LOG_LEVEL": "WARNING",
        "DWLF_TIMEOUT": 30.0,
        "DWLF_MAX_RETRIES": 3,
        "DWLF_RETRY_DELAY": 1.0,
        "DWLF_MAX_RETRY_DELAY": 10.0,
        "DWLF_BACKOFF_MULTIPLIER": 2.0,
        "DWLF_OUTPUT_FORMAT": "table",
        "DWLF_DEFAULT_TIMEFRAME": "daily",
    }

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        load_dotenv()
        self.config_dir: Path = Path(config_dir) if config_dir else default_config_dir()
        self.config_file: Path = self.config_dir / "config.json"
        self.log_dir: Path = self.config_dir / "logs"
        self._config_data: Dict[str, Any] = self._load_config_file()
        self._resolve()

    def _resolve(self) -> None:
        api_key_value = self._get_setting("DWLF_API_KEY")
        api_url_value = self._get_setting("DWLF_API_URL")

        self.api_key: Optional[str] = str(api_key_value).strip() if api_key_value else None
        self.api_url: str = str(api_url_value).strip().rstrip("/")
        self.log_level: str = str(self._get_setting("DWLF_LOG_LEVEL") or "WARNING").upper()
        self.timeout: float = self._to_float(self._get_setting("DWLF_TIMEOUT"), self._DEFAULTS["DWLF_TIMEOUT"])
        self.max_retries: int = self._to_int(self._get_setting("DWLF_MAX_RETRIES"), self._DEFAULTS["DWLF_MAX_RETRIES"])
        self.retry_delay: float = self._to_float(self._get_setting("DWLF_RETRY_DELAY"), self._DEFAULTS["DWLF_RETRY_DELAY"])
        self.max_retry_delay: float = self._to_float(
            self._get_setting("DWLF_MAX_RETRY_DELAY"), self._DEFAULTS["DWLF_MAX_RETRY_DELAY"]
        )
        self.backoff_multiplier: float = self._to_float(
            self._get_setting("DWLF_BACKOFF_MULTIPLIER"), self._DEFAULTS["DWLF_BACKOFF_MULTIPLIER"]
        )

        output_format = str(self._get_setting("DWLF_OUTPUT_FORMAT")).lower()
        self.output_format: str = output_format if output_format in VALID_OUTPUT_FORMATS else "table"
        self.default_timeframe: str = str(self._get_setting("DWLF_DEFAULT_TIMEFRAME"))
        self.default_symbols: List[str] = self._parse_symbols(self._config_data.get("defaultSymbols"))

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration values from config.json if available."""
        if not self.config_file.exists():
            return {}
        try:
            with self.config_file.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
                if isinstance(data, dict):
                    return data
                logger.warning("config.json must contain a JSON object; ignoring content.")
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read config.json: %s", exc)
        return {}

    def _get_setting(self, env_key: str) -> Any:
        """Resolve a configuration value using the configured precedence."""
        env_value = os.getenv(env_key)
        if env_value not in (None, ""):
            return env_value

        keys_to_check = self._CONFIG_KEY_MAPPING.get(env_key, (env_key,))
        for key in keys_to_check:
            config_value = self._config_data.get(key)
            if config_value not in (None, ""):
                return config_value

        return self._DEFAULTS.get(env_key)

    @staticmethod
    def _to_int(value: Any, default: int) -> int:
        """Convert a configuration value to integer with fallback."""
        try:
            if value is None or value == "":
                return default
            return int(value)
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _to_float(value: Any, default: float) -> float:
        """Convert a configuration value to float with fallback."""

        try:
            if value is None or value == "":
                return default
            return float(value)
        except (TypeError, ValueError):
            return default

    @staticmethod
    def _parse_symbols(value: Any) -> List[str]:
        """Parse a comma-separated or list symbol value."""
        if not value:
            return []
        if isinstance(value, (list, tuple)):
            return normalize_symbols(str(item) for item in value)
        return normalize_symbols(str(value).split(","))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _write_config_file(self, data: Dict[str, Any]) -> None:
        """Persist ``data`` with owner-only permissions."""

        self.config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        try:
            os.chmod(self.config_dir, 0o700)
        except OSError as exc:  # pragma: no cover - platform specific
            logger.debug("Could not tighten permissions on %s: %s", self.config_dir, exc)

        payload = dict(data)
        payload.setdefault("version", CONFIG_VERSION)
        # Created private; an existing file is tightened before the key is written.
        fd = os.open(self.config_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            os.chmod(self.config_file, 0o600)
            handle.write(json.dumps(payload, indent=2))

        self._config_data = payload
        self._resolve()

    def stored_values(self) -> Dict[str, Any]:
        """Return a copy of the values saved in config.json."""
        return dict(self._config_data)

    def save_api_key(self, api_key: str, api_url: Optional[str] = None) -> None:
        """Persist the API key (and optionally the API URL)."""

        key = api_key.strip()
        if not key.startswith(API_KEY_PREFIX):
            raise ConfigError(f'API key must start with "{API_KEY_PREFIX}"')

        data = self.stored_values()
        data["apiKey"] = key
        if api_url:
            data["apiUrl"] = api_url.strip().rstrip("/")
        data.setdefault("apiUrl", DEFAULT_API_URL)
        self._write_config_file(data)
        logger.info("API key saved to %s", self.config_file)

    def set_value(self, key: str, value: str) -> Any:
        """Validate and persist a single setting; returns the stored value."""

        if key not in SETTABLE_KEYS:
            raise ConfigError(f"Unknown configuration key: {key}")

        stored: Any
        if key == "apiKey":
            stored = value.strip()
            if not stored.startswith(API_KEY_PREFIX):
                raise ConfigError(f'API key must start with "{API_KEY_PREFIX}"')
        elif key == "apiUrl":
            stored = value.strip().rstrip("/")
            if not stored.startswith(("http://", "https://")):
                raise ConfigError("Invalid API URL: must start with http:// or https://")
        elif key == "defaultSymbols":
            stored = self._parse_symbols(value)
        elif key == "defaultTimeframe":
            stored = value.strip()
            if stored not in VALID_TIMEFRAMES:
                raise ConfigError(f"Invalid timeframe. Must be one of: {', '.join(VALID_TIMEFRAMES)}")
        else:
            stored = value.strip().lower()
            if stored not in VALID_OUTPUT_FORMATS:
                raise ConfigError(f"Invalid output format. Must be one of: {', '.join(VALID_OUTPUT_FORMATS)}")

        data = self.stored_values()
        data[key] = stored
        self._write_config_file(data)
        return stored

    def reset(self, keep_api_key: bool = True) -> None:
        """Restore default preferences, keeping the stored API key when requested."""

        data: Dict[str, Any] = {"apiUrl": DEFAULT_API_URL, "version": CONFIG_VERSION}
        stored_key = self._config_data.get("apiKey")
        if keep_api_key and stored_key:
            data["apiKey"] = stored_key
        self._write_config_file(data)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def has_credentials(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)

    def api_key_source(self) -> Optional[str]:
        """Return ``environment``, ``config`` or None depending on where the key comes from."""
        if os.getenv("DWLF_API_KEY"):
            return "environment"
        if self._config_data.get("apiKey"):
            return "config"
        return None

    def masked_api_key(self) -> str:
        return mask_api_key(self.api_key)

    def client_settings(self) -> ClientSettings:
        """Return the immutable settings handed to :class:`DWLFApiClient`."""

        return ClientSettings(
            api_url=self.api_url,
            api_key=self.api_key,
            timeout=max(1.0, self.timeout),
            max_retries=max(0, self.max_retries),
            retry_delay=max(0.0, self.retry_delay),
            max_retry_delay=max(0.0, self.max_retry_delay),
            backoff_multiplier=max(1.0, self.backoff_multiplier),
        )
