"""
HTTP client with bounded retry and exponential backoff.

Used by the REST inference client. Only transport-level failures are
retried (connection refused, timeouts, broken connections). A response with
a non-success status is an application-level rejection and fails at once.

Backoff: base_delay * 2^attempt (100ms, 200ms, 400ms, ... by default).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from leafdx.core.exceptions import (
    IntegrationError,
    IntegrationTimeoutError,
    IntegrationUnavailableError,
)


logger = logging.getLogger(__name__)

HTTP_INTEGRATION = 'http_client'


def map_transport_error(error: httpx.TransportError) -> IntegrationError:
    """Classify an httpx transport failure into the integration taxonomy."""
    if isinstance(error, httpx.TimeoutException):
        return IntegrationTimeoutError(HTTP_INTEGRATION, 'HTTP request timed out')
    if isinstance(error, httpx.ConnectError):
        return IntegrationUnavailableError(
            HTTP_INTEGRATION, 'Failed to connect to external service'
        )
    return IntegrationError(HTTP_INTEGRATION, str(error) or type(error).__name__)


class RetryableHttpClient:
    """
    Async HTTP client wrapping every request in retry/backoff.

    Usage:
        client = RetryableHttpClient(max_retries=3, timeout=30.0)
        response = await client.post(url, body)
        await client.close()
    """

    def __init__(
        self,
        max_retries: int = 3,
        timeout: float = 30.0,
        base_delay: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the HTTP client.

        Args:
            max_retries: Retries after the first attempt (N+1 attempts total)
            timeout: Per-attempt timeout in seconds
            base_delay: First backoff delay in seconds
            transport: Optional httpx transport (tests inject MockTransport)
        """
        self.max_retries = max_retries
        self.timeout = timeout
        self.base_delay = base_delay
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2**attempt)

    async def get(self, url: str) -> httpx.Response:
        return await self.execute_with_retry(lambda: self._client.get(url))

    async def post(self, url: str, body: bytes) -> httpx.Response:
        return await self.execute_with_retry(
            lambda: self._client.post(
                url,
                content=body,
                headers={'Content-Type': 'application/json'},
            )
        )

    async def execute_with_retry(
        self, request_fn: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        """
        Execute a request with retry on transport failure.

        Args:
            request_fn: Zero-arg callable producing a fresh request coroutine

        Returns:
            Successful (2xx) response

        Raises:
            IntegrationError: Non-success status (no retry) or exhausted retries,
                classified as timeout / unavailable / generic
        """
        last_error: httpx.TransportError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await request_fn()
            except httpx.TransportError as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = self.backoff_delay(attempt)
                    logger.debug(
                        f'Retry {attempt + 1}/{self.max_retries} in {delay:.2f}s: '
                        f'{type(e).__name__}: {e}'
                    )
                    await asyncio.sleep(delay)
                continue

            if response.is_success:
                return response

            raise IntegrationError(
                HTTP_INTEGRATION,
                f'HTTP {response.status_code}: {response.reason_phrase or "Unknown"}',
            )

        logger.warning(
            f'HTTP request failed after {self.max_retries + 1} attempts: {last_error!r}'
        )
        raise map_transport_error(last_error)

    async def close(self) -> None:
        await self._client.aclose()
