"""TETR.IO API HTTP client with retry, backoff and response validation."""

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx
import structlog
from pydantic import ValidationError

from uc_helper.core.config import get_global_settings
from .errors import (
    TetrioAPIError,
    BadRequestError,
    InvalidResponseError,
    NotFoundError,
    RateLimitError,
    TransientError,
)
from .models import StatsSnapshot, UserResponseDTO, to_snapshot

logger = structlog.get_logger(__name__)

USERNAME_RE = re.compile(r"^[a-z0-9_\-]{1,32}$")
ACCOUNT_ID_RE = re.compile(r"^[0-9a-f]{24}$")

_NOT_FOUND_HINTS = ("no such user", "not found")


def normalize_username(name: str) -> str:
    """Trim and casefold a user-supplied username for transmission and comparison."""
    return name.strip().casefold()


def looks_like_account_id(value: str) -> bool:
    """Whether a string has the shape of a TETR.IO account id."""
    return bool(ACCOUNT_ID_RE.match(value.strip().lower()))


class TetrioAPIClient:
    """Stateless client for the TETR.IO users endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        max_retry_wait_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize TETR.IO API client.

        Args:
            base_url: API root (uses config if None)
            session_id: Value for the X-Session-ID header
            timeout_seconds: Upper bound for a single request
            max_retries: Retries after the first attempt for transient failures
            backoff_base_seconds: First backoff delay; doubles on every retry
            max_retry_wait_seconds: Upper bound for any single wait between retries
            transport: Custom httpx transport, used by tests
            clock: Source of the ``fetched_at`` timestamp
        """
        settings = get_global_settings()
        self.base_url = (base_url or settings.tetrio_api_base_url).rstrip("/")
        self.session_id = session_id or settings.tetrio_session_id
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.api_timeout_seconds
        )
        self.max_retries = (
            max_retries if max_retries is not None else settings.api_max_retries
        )
        self.backoff_base_seconds = (
            backoff_base_seconds
            if backoff_base_seconds is not None
            else settings.api_backoff_base_seconds
        )
        self.max_retry_wait_seconds = (
            max_retry_wait_seconds
            if max_retry_wait_seconds is not None
            else settings.api_max_retry_wait_seconds
        )
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # HTTP session
        self.session: Optional[httpx.AsyncClient] = None
        self._session_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start_session()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    async def start_session(self) -> None:
        """Start the httpx session."""
        if self.session is None or self.session.is_closed:
            async with self._session_lock:
                if self.session is None or self.session.is_closed:
                    headers = {
                        "X-Session-ID": self.session_id,
                        "Accept": "application/json",
                        "User-Agent": "uc-helper/0.2",
                    }

                    timeout = httpx.Timeout(
                        self.timeout_seconds, connect=min(5.0, self.timeout_seconds)
                    )
                    limits = httpx.Limits(
                        max_keepalive_connections=10, max_connections=10
                    )

                    self.session = httpx.AsyncClient(
                        base_url=self.base_url,
                        headers=headers,
                        timeout=timeout,
                        limits=limits,
                        transport=self._transport,
                    )

                    logger.info(
                        "TETR.IO API client session started",
                        base_url=self.base_url,
                    )

    async def close(self) -> None:
        """Close the httpx session."""
        if self.session and not self.session.is_closed:
            await self.session.aclose()
            logger.info("TETR.IO API client session closed")

    # Public lookups

    async def fetch_by_username(self, name: str) -> StatsSnapshot:
        """Fetch a user's stats by username.

        :param name: Free text username, normalized before sending
        :raises BadRequestError: If the name cannot be a TETR.IO username
        :raises NotFoundError: If the user does not exist
        :raises TransientError: If the API kept failing
        :raises InvalidResponseError: If the payload failed validation
        """
        username = normalize_username(name)
        if not USERNAME_RE.match(username):
            raise BadRequestError(f"Invalid username: {name!r}")
        return await self._fetch_user(username)

    async def fetch_by_account_id(self, account_id: str) -> StatsSnapshot:
        """Fetch a user's stats by their immutable account id."""
        normalized = account_id.strip().lower()
        if not ACCOUNT_ID_RE.match(normalized):
            raise BadRequestError(f"Invalid account id: {account_id!r}")
        return await self._fetch_user(normalized)

    async def _fetch_user(self, user_key: str) -> StatsSnapshot:
        """Request ``/users/{user_key}`` and convert the response."""
        response_data = await self._make_request(f"/users/{user_key}")

        try:
            envelope = UserResponseDTO.model_validate(response_data)
        except ValidationError as e:
            raise InvalidResponseError(
                "Unexpected response envelope", response_data={"user": user_key}
            ) from e

        if not envelope.success or envelope.data is None:
            self._raise_unsuccessful(envelope.error, user_key)

        snapshot = to_snapshot(envelope.data.user, self._clock())
        logger.debug(
            "TETR.IO user fetched",
            user=user_key,
            account_id=snapshot.account_id,
            username=snapshot.username,
        )
        return snapshot

    @staticmethod
    def _raise_unsuccessful(error: Any, user_key: str) -> None:
        """Map an unsuccessful envelope to the matching error."""
        message = str(error or "Request unsuccessful")
        if any(hint in message.lower() for hint in _NOT_FOUND_HINTS):
            raise NotFoundError(message, status_code=404)
        raise TransientError(message, response_data={"user": user_key})

    # Request machinery

    @staticmethod
    async def _sleep(seconds: float) -> None:
        await asyncio.sleep(seconds)

    def _backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``, capped at the longest wait."""
        return min(
            self.backoff_base_seconds * (2**attempt), self.max_retry_wait_seconds
        )

    def _handle_http_error_status(
        self, response: httpx.Response, attempt: int
    ) -> float:
        """
        Handle a non-200 response.

        Returns:
            Seconds to sleep before retrying

        Raises:
            TetrioAPIError: For non-retryable errors or when retries are exhausted
        """
        status = response.status_code

        if status == 404:
            raise NotFoundError("No such user", status_code=status)

        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None and retry_after > self.max_retry_wait_seconds:
                raise RateLimitError(
                    "Rate limited for longer than the retry wait limit",
                    status_code=status,
                    retry_after=retry_after,
                )
            if attempt < self.max_retries:
                return retry_after if retry_after is not None else self._backoff(attempt)
            raise RateLimitError(
                "Rate limit exceeded", status_code=status, retry_after=retry_after
            )

        if status >= 500:
            if attempt < self.max_retries:
                return self._backoff(attempt)
            raise TransientError(f"Server error {status}", status_code=status)

        # Remaining non-200 statuses count as transient but retrying cannot help
        raise TransientError(f"Unexpected status {status}", status_code=status)

    async def _make_request(self, path: str) -> Dict[str, Any]:
        """
        GET ``path`` with retry logic.

        Args:
            path: Path relative to the API root

        Returns:
            Decoded JSON body

        Raises:
            TetrioAPIError: For API errors
        """
        await self.start_session()

        if self.session is None:
            raise TetrioAPIError("Session not initialized")

        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.session.get(path)
            except httpx.RequestError as e:
                # Covers timeouts and connection failures
                last_error = e
                logger.warning(
                    "TETR.IO request failed",
                    path=path,
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if attempt < self.max_retries:
                    await self._sleep(self._backoff(attempt))
                continue

            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as e:
                    raise InvalidResponseError(
                        "Response body is not JSON", status_code=200
                    ) from e

            sleep_seconds = self._handle_http_error_status(response, attempt)
            logger.warning(
                "Retrying TETR.IO request",
                path=path,
                status_code=response.status_code,
                attempt=attempt + 1,
                sleep_seconds=sleep_seconds,
            )
            await self._sleep(sleep_seconds)

        raise TransientError(f"Request failed: {last_error}")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
