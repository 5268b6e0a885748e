"""Shared fixtures isolating tests from the user's DWLF configuration."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from click.testing import CliRunner

from api.dwlf_client import ApiError, ApiResult, ErrorKind, KeyValidation

_DWLF_ENV_VARS = (
    "DWLF_API_KEY",
    "DWLF_API_URL",
    "DWLF_LOG_LEVEL",
    "DWLF_TIMEOUT",
    "DWLF_MAX_RETRIES",
    "DWLF_RETRY_DELAY",
    "DWLF_MAX_RETRY_DELAY",
    "DWLF_BACKOFF_MULTIPLIER",
    "DWLF_OUTPUT_FORMAT",
    "DWLF_DEFAULT_TIMEFRAME",
)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Point the config directory at a temp dir and clear DWLF_* overrides."""

    for name in _DWLF_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env in the working directory from leaking into Config.
    monkeypatch.setattr("config.load_dotenv", lambda *args, **kwargs: False)
    config_dir = tmp_path / "dwlf"
    monkeypatch.setenv("DWLF_CONFIG_DIR", str(config_dir))
    return config_dir


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Undo handler changes made by ``setup_logging`` during a test."""

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class StubClient:
    """In-memory stand-in for ``DWLFApiClient`` driven by a routing callable.

    ``handler(method, path, params, body)`` returns the payload for a call or
    raises :class:`ApiError` to simulate a failure.
    """

    def __init__(self, handler: Callable[..., Any], settings: Any = None) -> None:
        self.handler = handler
        self.settings = settings
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]], Any]] = []
        self.reachable = True
        self.validation = KeyValidation(valid=True, user_info={"status": "Validated successfully", "portfolios": 1})

    def request(self, method: str, path: str, params: Any = None, body: Any = None) -> ApiResult:
        self.calls.append((method, path, dict(params) if params else None, body))
        try:
            return ApiResult.success(self.handler(method, path, params or {}, body))
        except ApiError as exc:
            return ApiResult.failure(exc)

    def get(self, path: str, params: Any = None) -> Any:
        return self.request("GET", path, params).unwrap()

    def post(self, path: str, body: Any = None, params: Any = None) -> Any:
        return self.request("POST", path, params, body).unwrap()

    def delete(self, path: str, params: Any = None) -> Any:
        return self.request("DELETE", path, params).unwrap()

    def request_many(self, descriptors: Any) -> List[ApiResult]:
        return [self.request(d.method, d.path, d.params, d.body) for d in descriptors]

    def check_connectivity(self) -> bool:
        return self.reachable

    def validate_api_key(self) -> KeyValidation:
        return self.validation

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [path for verb, path, _, _ in self.calls if method is None or verb == method]


def routes(mapping: Dict[Tuple[str, str], Any]) -> Callable[..., Any]:
    """Build a handler from ``{(method, path): payload_or_ApiError}``."""

    def _handler(method: str, path: str, params: Dict[str, Any], body: Any) -> Any:
        value = mapping.get((method, path), ApiError(ErrorKind.NOT_FOUND, "Resource not found", 404))
        if isinstance(value, ApiError):
            raise value
        return value

    return _handler


@pytest.fixture
def install_client(monkeypatch):
    """Patch the CLI's client class with a :class:`StubClient` and set an API key."""

    def _install(handler: Callable[..., Any], *, api_key: Optional[str] = "dwlf_sk_test_key_123456") -> StubClient:
        if api_key:
            monkeypatch.setenv("DWLF_API_KEY", api_key)
        stub = StubClient(handler)

        def _factory(settings: Any = None, **kwargs: Any) -> StubClient:
            stub.settings = settings
            return stub

        monkeypatch.setattr("dwlf_cli.DWLFApiClient", _factory)
        return stub

    return _install


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()
