"""Retry with linear backoff around upstream calls."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from core.exceptions import RetriesExhaustedError, UpstreamError
from core.protocols import RequestLogger
from core.request_types import RetryState

T = TypeVar("T")


class RetryPolicy:
    """Run a call up to ``max_retries + 1`` times.

    After failed attempt ``i`` (zero-based) the policy waits
    ``retry_delay_ms * (i + 1)`` before trying again; there is no wait after
    the final attempt. Only ``UpstreamError`` is retried; a response that
    came back from upstream is a success whatever its status.
    """

    def __init__(
        self,
        max_retries: int,
        retry_delay_ms: int,
        logger: RequestLogger,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._logger = logger
        self._sleep = sleep

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        state: RetryState | None = None,
        can_retry: Callable[[UpstreamError], bool] | None = None,
    ) -> T:
        """Return the first successful result or raise ``RetriesExhaustedError``."""
        if state is None:
            state = RetryState()
        attempt = 0
        while True:
            state.attempt = attempt
            try:
                return await call()
            except UpstreamError as e:
                state.last_error = e
                is_last = attempt == self.max_retries
                if is_last or (can_retry is not None and not can_retry(e)):
                    raise RetriesExhaustedError(e, attempts=attempt + 1) from e

                delay_ms = self.retry_delay_ms * (attempt + 1)
                self._logger.log_retry(attempt + 1, delay_ms, str(e))
                await self._sleep(delay_ms / 1000)
                attempt += 1
