"""Retrying HTTP client for the Google APIs.

Wraps an ``httpx.AsyncClient`` with the retry policy the Sheets API needs:

- 429 and 5xx responses are retried with exponential backoff and jitter
- a 401 triggers one credential refresh followed by an immediate retry
- a 403 is reported to a veto callback and returned as-is

Every call runs a small explicit state machine (see ``RetryState``) whose
state is local to that call. The only state shared between calls is the
bearer token, which the refresh path replaces.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import ssl
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import certifi
import httpx
from loguru import logger

DEFAULT_BACKOFF_ATTEMPTS = 9
DEFAULT_TIMEOUT = 60

ForbiddenCallback = Callable[[httpx.Response], bool]
RefreshCallback = Callable[[], str | Awaitable[str]]
SleepFunc = Callable[[float], Awaitable[Any]]


class RetryState(Enum):
    """States of a single ``RetryingClient.send`` call."""

    ATTEMPTING = "attempting"
    REFRESHED_ONCE = "refreshed_once"
    FORBIDDEN = "forbidden"
    EXHAUSTED = "exhausted"
    DONE = "done"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with jitter, in seconds.

    Attempt ``i`` waits ``base * 2**i`` plus up to ``jitter_ratio`` of that,
    never more than ``cap``: 0.1s, 0.2s, 0.4s, ... up to 2s.
    """

    base: float = 0.1
    jitter_ratio: float = 0.2
    cap: float = 2.0

    def delay(self, attempt: int) -> float:
        step = self.base * (2**attempt)
        jitter = random.uniform(0, step * self.jitter_ratio)
        return min(step + jitter, self.cap)


@dataclass(frozen=True)
class RetryResult:
    """Outcome of one ``send`` call.

    ``continue_job`` holds the veto callback's answer when the call ended in
    ``RetryState.FORBIDDEN`` and is None otherwise.
    """

    response: httpx.Response
    state: RetryState
    attempts: int
    sleeps: int
    continue_job: bool | None = None


def is_retriable(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def _stop_on_forbidden(_response: httpx.Response) -> bool:
    return False


class RetryingClient:
    """Bearer-authenticated HTTP client with backoff and token refresh.

    Example:
        >>> client = RetryingClient("ya29...", on_unauthorized=credentials.refresh)
        >>> response = await client.request("https://sheets.googleapis.com/v4/...")
    """

    def __init__(
        self,
        access_token: str,
        *,
        backoff_attempts: int = DEFAULT_BACKOFF_ATTEMPTS,
        on_forbidden: ForbiddenCallback | None = None,
        on_unauthorized: RefreshCallback | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
        backoff: BackoffPolicy | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the client.

        Args:
            access_token: OAuth2 bearer token
            backoff_attempts: Retries allowed for 429/5xx responses
            on_forbidden: Called with a 403 response; returns whether the
                overall job may continue. Defaults to always stop.
            on_unauthorized: Returns a fresh access token; called at most
                once per request
            http_client: Pre-configured client (tests pass one built on
                ``httpx.MockTransport``)
            sleep: Coroutine used to wait between retries
            backoff: Delay policy
            timeout: Request timeout in seconds for the default client
        """
        self._access_token = access_token
        self.backoff_attempts = max(0, backoff_attempts)
        self.on_forbidden = on_forbidden or _stop_on_forbidden
        self.on_unauthorized = on_unauthorized
        self._sleep = sleep
        self._backoff = backoff or BackoffPolicy()
        if http_client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            http_client = httpx.AsyncClient(timeout=timeout, verify=ssl_context)
        self._client = http_client

    @property
    def access_token(self) -> str:
        return self._access_token

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        **options: Any,
    ) -> httpx.Response:
        """Send a request and return the final response.

        Non-success responses are returned, not raised; callers decide what
        a 4xx or an exhausted 5xx means for them.
        """
        result = await self.send(url, method, headers, **options)
        return result.response

    async def send(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        **options: Any,
    ) -> RetryResult:
        """Send a request through the retry state machine."""
        attempt = 0
        attempts = 0
        sleeps = 0

        while True:
            response = await self._send_once(method, url, headers, options)
            attempts += 1
            status = response.status_code

            if status == 401 and self.on_unauthorized is not None:
                new_token = await self._refresh_token()
                if not new_token:
                    logger.warning("Token refresh returned no token; giving up")
                    return RetryResult(response, RetryState.DONE, attempts, sleeps)
                self._access_token = new_token
                logger.info("Access token refreshed, retrying request")
                response = await self._send_once(method, url, headers, options)
                attempts += 1
                return RetryResult(
                    response, RetryState.REFRESHED_ONCE, attempts, sleeps
                )

            if status == 403:
                continue_job = bool(self.on_forbidden(response))
                logger.warning(
                    f"Forbidden ({response.reason_phrase}) for {method} {url}; "
                    f"continue job: {continue_job}"
                )
                return RetryResult(
                    response,
                    RetryState.FORBIDDEN,
                    attempts,
                    sleeps,
                    continue_job=continue_job,
                )

            if is_retriable(status):
                if attempt >= self.backoff_attempts:
                    logger.warning(
                        f"Giving up on {method} {url} after {attempts} attempts "
                        f"(last status {status})"
                    )
                    return RetryResult(
                        response, RetryState.EXHAUSTED, attempts, sleeps
                    )
                delay = self._backoff.delay(attempt)
                logger.debug(
                    f"Request failed with {status} "
                    f"(attempt {attempt + 1}/{self.backoff_attempts + 1}), "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
                sleeps += 1
                attempt += 1
                continue

            return RetryResult(response, RetryState.DONE, attempts, sleeps)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def _send_once(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None,
        options: dict[str, Any],
    ) -> httpx.Response:
        merged = dict(headers or {})
        merged["Authorization"] = f"Bearer {self._access_token}"
        return await self._client.request(method, url, headers=merged, **options)

    async def _refresh_token(self) -> str:
        if self.on_unauthorized is None:
            return ""
        token = self.on_unauthorized()
        if inspect.isawaitable(token):
            token = await token
        return str(token or "")
