"""
DWLF API Client
Resilient wrapper around ``requests`` for the DWLF market-data platform.

The client adds authentication headers, a rolling-window rate limiter and
retry with exponential backoff, and maps every transport or HTTP failure to
a small :class:`ErrorKind` taxonomy. :meth:`DWLFApiClient.request` returns an
:class:`ApiResult`; the ``get``/``post``/``put``/``delete`` helpers unwrap it
and raise :class:`ApiError` on failure.

Updates: v0.1.0 - 2026-02-02 - Initial resilient client with result type.
Updates: v0.1.1 - 2026-02-09 - Added all-settled fan-out helpers.
Updates: v0.1.2 - 2026-02-16 - Added API key validation and health check.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import Lock
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

import requests
from urllib3.exceptions import ReadTimeoutError

logger = logging.getLogger(__name__)

CLIENT_VERSION = "0.1.0"
USER_AGENT = f"dwlf-cli/{CLIENT_VERSION}"
DEFAULT_API_URL = "https://api.dwlf.co.uk"
API_KEY_PREFIX = "dwlf_sk_"
HEALTH_CHECK_TIMEOUT = 5.0

_MAX_FAN_OUT_WORKERS = 8


class ErrorKind(str, Enum):
    """Normalised failure categories surfaced to command handlers."""

    CONNECTION = "connection"
    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    TRANSPORT = "transport"


_TRANSIENT_KINDS = frozenset(
    {ErrorKind.CONNECTION, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR}
)


class ApiError(Exception):
    """Normalised DWLF API failure carrying kind, message and HTTP status."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def transient(self) -> bool:
        return self.kind in _TRANSIENT_KINDS

    def __repr__(self) -> str:
        return f"ApiError(kind={self.kind.value!r}, message={self.message!r}, status_code={self.status_code!r})"


@dataclass(frozen=True, slots=True)
class ApiResult:
    """Success or failure outcome of a single API call."""

    data: Any = None
    error: Optional[ApiError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the payload or raise the carried :class:`ApiError`."""

        if self.error is not None:
            raise self.error
        return self.data

    @classmethod
    def success(cls, data: Any) -> "ApiResult":
        return cls(data=data)

    @classmethod
    def failure(cls, error: ApiError) -> "ApiResult":
        return cls(error=error)


@dataclass(frozen=True, slots=True)
class RateLimit:
    """Allow at most ``max_requests`` dispatches in any trailing ``window`` seconds."""

    max_requests: int
    window: float


@dataclass(frozen=True, slots=True)
class ClientSettings:
    """Immutable client configuration built once per CLI invocation."""

    api_url: str = DEFAULT_API_URL
    api_key: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    max_retry_delay: float = 10.0
    backoff_multiplier: float = 2.0
    rate_limit: Optional[RateLimit] = None

    def with_rate_limit(self, max_requests: int, window: float = 1.0) -> "ClientSettings":
        return replace(self, rate_limit=RateLimit(max_requests=max_requests, window=window))


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """Method, path, query parameters and optional JSON body of one call."""

    method: str
    path: str
    params: Optional[Mapping[str, Any]] = None
    body: Any = None


@dataclass(slots=True)
class KeyValidation:
    """Outcome of validating an API key against the platform."""

    valid: bool
    error: Optional[str] = None
    user_info: Dict[str, Any] = field(default_factory=dict)


class _RateLimiter:
    """Rolling-window limiter guarding request dispatch for one client."""

    def __init__(
        self,
        max_requests: int,
        window: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._timestamps: Deque[float] = deque()
        self._lock = Lock()

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    def acquire(self) -> float:
        """Block until a slot is free, record the dispatch and return seconds waited."""

        waited = 0.0
        # Callers queue on the lock, so they pass the gate one at a time.
        with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    return waited

                wait_for = self._timestamps[0] + self.window - now
                logger.debug("Rate limit reached; waiting %.3fs", wait_for)
                self._sleep(wait_for)
                waited += wait_for

    def __len__(self) -> int:
        return len(self._timestamps)


def clean_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Drop ``None`` entries from a query mapping; keep falsy values like ``0`` or ``""``."""

    if not params:
        return {}
    return {key: value for key, value in params.items() if value is not None}


def _response_payload(response: Optional[requests.Response]) -> Any:
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _payload_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        for key in ("error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def normalize_error(exc: BaseException) -> ApiError:
    """Map a ``requests`` failure to exactly one :class:`ErrorKind`."""

    if isinstance(exc, ApiError):
        return exc

    # ConnectTimeout derives from both Timeout and ConnectionError.
    if isinstance(exc, requests.exceptions.Timeout):
        return ApiError(ErrorKind.TIMEOUT, "Request timed out")
    if isinstance(exc, requests.exceptions.ConnectionError):
        # Read timeouts while streaming the body arrive wrapped in ConnectionError.
        if exc.args and isinstance(exc.args[0], ReadTimeoutError):
            return ApiError(ErrorKind.TIMEOUT, "Request timed out")
        return ApiError(ErrorKind.CONNECTION, "Cannot connect to DWLF API")

    response = getattr(exc, "response", None)
    if response is not None:
        status = response.status_code
        payload = _response_payload(response)
        if status == 401:
            return ApiError(ErrorKind.UNAUTHORIZED, "Invalid API key (invalid credentials)", status, payload)
        if status == 403:
            return ApiError(ErrorKind.FORBIDDEN, "Access forbidden", status, payload)
        if status == 404:
            return ApiError(ErrorKind.NOT_FOUND, "Resource not found", status, payload)
        if status == 429:
            return ApiError(ErrorKind.RATE_LIMITED, "Rate limit exceeded", status, payload)
        if status >= 500:
            return ApiError(ErrorKind.SERVER_ERROR, f"Server error ({status})", status, payload)
        message = _payload_message(payload) or str(exc) or f"HTTP {status}"
        return ApiError(ErrorKind.CLIENT_ERROR, message, status, payload)

    return ApiError(ErrorKind.TRANSPORT, str(exc) or exc.__class__.__name__)


def settle_all(
    tasks: Sequence[Callable[[], Any]],
    max_workers: Optional[int] = None,
) -> List[ApiResult]:
    """Run callables concurrently and return one :class:`ApiResult` per task, in order.

    A failing branch never cancels the others. Callables may return an
    :class:`ApiResult` directly or a plain value; raised errors become failures.
    """

    if not tasks:
        return []

    workers = max_workers or min(len(tasks), _MAX_FAN_OUT_WORKERS)
    results: List[ApiResult] = [ApiResult.failure(ApiError(ErrorKind.TRANSPORT, "not executed"))] * len(tasks)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(task): index for index, task in enumerate(tasks)}
        for future in as_completed(futures):
            index = futures[future]
            try:
                value = future.result()
            except ApiError as exc:
                results[index] = ApiResult.failure(exc)
            except Exception as exc:
                logger.debug("Fan-out branch %d raised: %s", index, exc, exc_info=True)
                results[index] = ApiResult.failure(normalize_error(exc))
            else:
                results[index] = value if isinstance(value, ApiResult) else ApiResult.success(value)

    return results


class DWLFApiClient:
    """DWLF REST client with retry, backoff, rate limiting and error normalisation."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.api_url = self.settings.api_url.rstrip("/")
        self.base_url = f"{self.api_url}/v2"
        self._sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        })
        if self.settings.api_key:
            self.session.headers["Authorization"] = f"ApiKey {self.settings.api_key}"

        rate_limit = self.settings.rate_limit
        self._rate_limiter: Optional[_RateLimiter] = (
            _RateLimiter(rate_limit.max_requests, rate_limit.window, sleep=sleep)
            if rate_limit
            else None
        )

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def calculate_retry_delay(self, attempt: int) -> float:
        """Return the delay in seconds before retry number ``attempt`` (1-based)."""

        settings = self.settings
        delay = settings.retry_delay * (settings.backoff_multiplier ** (attempt - 1))
        return min(delay, settings.max_retry_delay)

    def should_retry(self, error: ApiError, attempt: int) -> bool:
        """Return True when retry number ``attempt`` is allowed for ``error``."""

        return attempt <= self.settings.max_retries and error.transient

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, params: Optional[Mapping[str, Any]], body: Any) -> Any:
        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        response = self.session.request(
            method.upper(),
            self._url(path),
            params=clean_params(params),
            json=body,
            timeout=self.settings.timeout,
        )
        response.raise_for_status()

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ------------------------------------------------------------------
    # Public request API
    # ------------------------------------------------------------------

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> ApiResult:
        """Perform a request, retrying transient failures, and return an :class:`ApiResult`."""

        attempt = 0
        while True:
            try:
                return ApiResult.success(self._send(method, path, params, body))
            except requests.exceptions.RequestException as exc:
                error = normalize_error(exc)

            attempt += 1
            if not self.should_retry(error, attempt):
                logger.debug("%s %s failed: %s", method.upper(), path, error.message)
                return ApiResult.failure(error)

            delay = self.calculate_retry_delay(attempt)
            logger.info(
                "%s %s failed (%s); retry %d/%d in %.2fs",
                method.upper(),
                path,
                error.message,
                attempt,
                self.settings.max_retries,
                delay,
            )
            self._sleep(delay)

    def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params).unwrap()

    def post(self, path: str, body: Any = None, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("POST", path, params=params, body=body).unwrap()

    def put(self, path: str, body: Any = None, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("PUT", path, params=params, body=body).unwrap()

    def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("DELETE", path, params=params).unwrap()

    def request_many(self, descriptors: Sequence[RequestDescriptor]) -> List[ApiResult]:
        """Issue independent requests concurrently with an all-settled join."""

        tasks = [
            (lambda d=descriptor: self.request(d.method, d.path, params=d.params, body=d.body))
            for descriptor in descriptors
        ]
        return settle_all(tasks)

    # ------------------------------------------------------------------
    # Account helpers
    # ------------------------------------------------------------------

    def validate_api_key(self) -> KeyValidation:
        """Check the configured key by listing portfolios."""

        result = self.request("GET", "/portfolios")
        if not result.ok:
            return KeyValidation(valid=False, error=result.error.message)

        data = result.data
        portfolios = data.get("portfolios", []) if isinstance(data, dict) else data
        user_info: Dict[str, Any] = {"status": "Validated successfully", "permissions": []}
        if isinstance(portfolios, list):
            user_info["portfolios"] = len(portfolios)
        return KeyValidation(valid=True, user_info=user_info)

    def check_connectivity(self) -> bool:
        """Return True when the platform health endpoint answers with a 2xx status."""

        try:
            response = self.session.get(f"{self.api_url}/health", timeout=HEALTH_CHECK_TIMEOUT)
        except requests.exceptions.RequestException as exc:
            logger.debug("Health check failed: %s", exc)
            return False
        return 200 <= response.status_code < 300


def validate_api_key(
    api_key: Optional[str],
    api_url: str = DEFAULT_API_URL,
    *,
    session: Optional[requests.Session] = None,
) -> KeyValidation:
    """Validate key format locally, then against the platform."""

    if not api_key or not api_key.strip():
        return KeyValidation(valid=False, error="API key is required")
    if not api_key.startswith(API_KEY_PREFIX):
        return KeyValidation(valid=False, error=f'API key must start with "{API_KEY_PREFIX}"')

    settings = ClientSettings(api_url=api_url, api_key=api_key.strip(), max_retries=1)
    return DWLFApiClient(settings, session=session).validate_api_key()
