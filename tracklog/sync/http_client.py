"""HTTP client with per-attempt timeout and exponential backoff retry."""

import asyncio
import logging
from typing import Any

import httpx

from ..errors import HttpError, NetworkError, RequestTimeoutError

logger = logging.getLogger(__name__)


class NetworkClient:
    """Issues HTTP requests and classifies failures.

    Connection failures, timeouts and 5xx responses are retried with
    exponential backoff; 4xx responses fail immediately. After the last
    attempt the most recent error is raised.
    """

    def __init__(
        self,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            max_retries: Retries after the first attempt.
            backoff_seconds: Delay before the first retry, doubled each time.
            timeout: Default per-attempt timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method.
            url: Absolute URL.
            headers: Extra request headers.
            body: JSON-serializable request body.
            timeout: Per-attempt timeout in seconds; defaults to the client's.

        Returns:
            Decoded JSON response, or None for an empty body.

        Raises:
            NetworkError: Connection-level failure.
            RequestTimeoutError: An attempt got no response in time.
            HttpError: Non-2xx response.
        """
        attempts = self.max_retries + 1
        backoff = self.backoff_seconds
        last_error: Exception | None = None

        async with httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.timeout,
            transport=self._transport,
        ) as client:
            for attempt in range(attempts):
                try:
                    response = await client.request(
                        method, url, headers=headers, json=body
                    )
                except httpx.TimeoutException as e:
                    last_error = RequestTimeoutError(f"{method} {url} timed out")
                    last_error.__cause__ = e
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{attempts}"
                    )
                except httpx.TransportError as e:
                    last_error = NetworkError(f"{method} {url} failed: {e}")
                    last_error.__cause__ = e
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{attempts}: {e}"
                    )
                else:
                    if response.is_success:
                        return self._decode(response)

                    error = HttpError(response.status_code, response.text)
                    if not error.retryable:
                        # Client error, don't retry
                        raise error
                    last_error = error
                    logger.warning(
                        f"Server error {response.status_code}, "
                        f"attempt {attempt + 1}/{attempts}"
                    )

                if attempt < attempts - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        logger.error(f"{method} {url} failed after {attempts} attempts")
        raise last_error

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Response from {response.url} is not JSON") from e
