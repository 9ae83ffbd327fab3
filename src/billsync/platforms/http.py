"""Async HTTP transport shared by the REST platform adapters.

Provides PlatformHttpClient: one httpx.AsyncClient per request with the
configured timeout, JSON in/out, and translation of every failure into the
platform error taxonomy:

- 401/403 -> AuthenticationError
- 400/422 -> ValidationError
- 429 -> RateLimitError (waited out in-call, see below)
- other non-2xx, transport errors and timeouts -> ApiError

A 429 is retried inside the same call with tenacity, sleeping for the
server's Retry-After hint (capped at ``rate_limit_max_wait``) or an
exponential backoff when no hint is sent. After ``rate_limit_retries``
attempts the RateLimitError propagates to the caller.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.billsync.platforms.errors import (
    ApiError,
    AuthenticationError,
    PlatformError,
    RateLimitError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def _parse_retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Best-effort error text from a JSON or plain-text error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "Message", "error_description"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    return response.text or response.reason_phrase


def error_for_response(platform: str, response: httpx.Response) -> PlatformError:
    """Map a non-2xx response to the matching PlatformError."""
    status = response.status_code
    message = _error_message(response)

    if status in (401, 403):
        return AuthenticationError(platform, message or "Authentication failed", status)
    if status in (400, 422):
        return ValidationError(platform, "request", message, status)
    if status == 429:
        return RateLimitError(platform, _parse_retry_after(response.headers.get("Retry-After")))
    return ApiError(platform, f"HTTP {status}: {message}", status)


class PlatformHttpClient:
    """JSON-over-HTTP client for one platform.

    Args:
        platform: Platform identifier used in errors and logs.
        base_url: API root, e.g. ``https://acme.gocleo.com/api/v1``.
        headers: Default headers (auth is set via ``set_auth_header``).
        timeout: Per-request timeout in seconds.
        rate_limit_retries: Attempts per call while the platform answers 429.
        rate_limit_max_wait: Upper bound for a single 429 wait, in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        platform: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        rate_limit_retries: int = 3,
        rate_limit_max_wait: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._platform = platform
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            **(headers or {}),
        }
        self._timeout = timeout
        self._rate_limit_retries = max(rate_limit_retries, 1)
        self._rate_limit_max_wait = rate_limit_max_wait
        self._transport = transport
        self._backoff = wait_exponential(multiplier=1, min=1, max=rate_limit_max_wait)

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_auth_header(self, value: str) -> None:
        self._headers["Authorization"] = value

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _rate_limit_wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            wait = min(exc.retry_after, self._rate_limit_max_wait)
        else:
            wait = self._backoff(retry_state)
        logger.warning(
            "platform.rate_limited",
            platform=self._platform,
            attempt=retry_state.attempt_number,
            wait_seconds=wait,
        )
        return wait

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json: Any,
    ) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as exc:
            raise ApiError(self._platform, f"Request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise ApiError(self._platform, f"Network error: {exc}") from exc

        if response.is_error:
            raise error_for_response(self._platform, response)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                self._platform, "Invalid JSON in response", response.status_code
            ) from exc

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body (None when empty)."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._rate_limit_retries),
            wait=self._rate_limit_wait,
            retry=retry_if_exception_type(RateLimitError),
            reraise=True,
        ):
            with attempt:
                return await self._send(method, path, params, json)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
