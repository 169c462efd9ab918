"""Bounded retry with exponential backoff for remote calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from robomcp.mcp.errors import RemoteCallError
from robomcp.mcp.types import TextResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

type Sleep = Callable[[float], Awaitable[None]]

_CLIENT_ERROR_MARKERS = ("400", "401", "403")


@dataclass(slots=True)
class RetryAttemptState:
    """Progress of one executor invocation."""

    attempt_index: int = 0
    last_error: Exception | None = None


def is_non_retryable(exc: Exception) -> bool:
    """Whether a failure signals a bad request or an auth problem."""
    if isinstance(exc, RemoteCallError) and not exc.retryable:
        return True
    message = str(exc)
    return any(marker in message for marker in _CLIENT_ERROR_MARKERS)


class RetryExecutor:
    """Run a fallible coroutine factory up to a fixed number of attempts.

    Failures never escape: exhaustion and non-retryable failures are returned
    as a `TextResult` describing the last error.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        sleep: Sleep | None = None,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._base_delay_seconds = base_delay_seconds
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def delay_for(self, attempt_index: int) -> float:
        """Backoff before the attempt following `attempt_index`."""
        return self._base_delay_seconds * (2**attempt_index)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T | TextResult:
        state = RetryAttemptState()
        while state.attempt_index < self._max_attempts:
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                state.last_error = exc
                if is_non_retryable(exc):
                    logger.warning("Not retrying non-retryable failure: %s", exc)
                    return TextResult.failure(f"Error: {exc}")
            if state.attempt_index < self._max_attempts - 1:
                delay = self.delay_for(state.attempt_index)
                logger.info(
                    "Attempt %d/%d failed (%s); retrying in %.1fs",
                    state.attempt_index + 1,
                    self._max_attempts,
                    state.last_error,
                    delay,
                )
                await self._sleep(delay)
            state.attempt_index += 1

        message = str(state.last_error) if state.last_error is not None else ""
        return TextResult.failure(
            f"Error after {self._max_attempts} attempts: {message or 'Unknown error'}"
        )
