"""
JSON-over-HTTP transport shared by the ledger, transfer and oracle clients.

Requests are throttled to a per-client rate, then retried with exponential
backoff when the far side is unavailable (5xx, 429, timeouts and connection
errors). Any other 4xx means the request itself is wrong and fails at once.
Writes can carry an ``Idempotency-Key`` so a retried POST is applied once.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """A collaborator could not be reached or rejected the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class RateLimitError(GatewayError):
    """HTTP 429 from the collaborator."""


class RequestThrottle:
    """Sliding one-second window allowing at most ``per_second`` requests."""

    def __init__(self, per_second: float) -> None:
        self.per_second = per_second
        self._sent: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            while self._sent and now - self._sent[0] >= 1.0:
                self._sent.popleft()
            if len(self._sent) >= self.per_second:
                await asyncio.sleep(1.0 - (now - self._sent[0]))
            self._sent.append(time.monotonic())


class JsonApiClient:
    """
    Base class for the HTTP collaborators.

    Usage:
        async with HttpLedgerGateway(settings.ledger_url) as ledger:
            snapshot = await ledger.get_round_snapshot()
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 10.0,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        api_key: Optional[str] = None,
    ):
        """
        Args:
            base_url: Service root; a trailing slash is dropped
            session: Shared aiohttp session (one is created on first use otherwise)
            rate_limit: Maximum requests per second
            timeout: Total timeout per request in seconds
            max_retries: Attempts per request, including the first
            retry_delay: First backoff delay, doubled per attempt
            api_key: Sent as a bearer token when set
        """
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._throttle = RequestThrottle(rate_limit)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
            self._owns_session = True
        return self._session

    async def _send(self, method: str, path: str, headers: dict[str, str], **kwargs) -> Any:
        """One attempt. Non-2xx responses become GatewayError."""
        await self._throttle.wait()
        async with self._ensure_session().request(
            method, f"{self.base_url}{path}", headers=headers, **kwargs
        ) as response:
            if response.status == 429:
                raise RateLimitError(f"{method} {path}: rate limited", status_code=429)
            if response.status >= 400:
                text = await response.text()
                raise GatewayError(f"{method} {path}: {response.status} - {text}", status_code=response.status)
            return await response.json()

    async def _request(
        self,
        method: str,
        path: str,
        idempotency_key: Optional[str] = None,
        **kwargs,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            GatewayError: on a non-retryable 4xx, or once retries run out
        """
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        last_error: Optional[GatewayError] = None

        for attempt in range(self._max_retries):
            try:
                return await self._send(method, path, headers, **kwargs)
            except GatewayError as e:
                if not e.retryable:
                    raise
                last_error = e
            except asyncio.TimeoutError:
                last_error = GatewayError(f"{method} {path}: timed out")
            except aiohttp.ClientError as e:
                last_error = GatewayError(f"{method} {path}: {e}")

            if attempt + 1 < self._max_retries:
                delay = self._retry_delay * (2 ** attempt)
                if isinstance(last_error, RateLimitError):
                    delay *= 2
                logger.warning(
                    f"{last_error} (attempt {attempt + 1}/{self._max_retries}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise last_error or GatewayError(f"{method} {path}: no attempts made")
