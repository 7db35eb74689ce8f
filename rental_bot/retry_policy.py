"""
Retry Policy для вызовов хранилища.

Retries only StoreError with ErrorKind.TRANSIENT, bounded attempts with
exponential backoff (150ms, 300ms, ...). Store calls run in a worker thread
and backoff is an asyncio sleep, so a retrying conversation never stalls the
others.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .exceptions import StoreError
from .messenger import Messenger

logger = logging.getLogger("retry_policy")

PROGRESS_NOTICE = "Work in progress... ⏳"
FAILURE_NOTICE = "Database error occurred. Please try again later."


class _Failure(Enum):
    FAILED = "failed"


# Returned by run_for_user when the failure was already reported to the user
FAILED = _Failure.FAILED


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StoreError) and exc.is_transient


class RetryPolicy:
    """Bounded exponential-backoff retries for store operations."""

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.15,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=self.base_delay),
            retry=retry_if_exception(_is_transient),
            sleep=self._sleep,
            reraise=True,
        )

    async def execute(self, op: Callable[..., Any], *args: Any,
                      on_retry: Optional[Callable[[int], Awaitable[None]]] = None) -> Any:
        """
        Run `op(*args)` in a worker thread under the policy.

        Fatal errors propagate after one attempt; transient ones are retried
        and the last StoreError is raised once attempts run out.
        """
        name = getattr(op, "__name__", repr(op))
        async for attempt in self._retrying():
            number = attempt.retry_state.attempt_number
            if number > 1:
                logger.warning(f"🔄 Retrying {name} (attempt {number}/{self.max_attempts})")
                if on_retry is not None:
                    await on_retry(number)
            with attempt:
                result = await asyncio.to_thread(op, *args)
        return result

    async def run_for_user(self, messenger: Messenger, identity: int,
                           op: Callable[..., Any], *args: Any) -> Any:
        """
        User-facing variant of execute().

        Sends a progress notice before every retry; on final failure sends a
        generic database error notice and returns FAILED instead of raising.
        """
        async def notify(_attempt: int) -> None:
            await messenger.send_text(identity, PROGRESS_NOTICE)

        try:
            return await self.execute(op, *args, on_retry=notify)
        except StoreError as e:
            logger.error(
                f"❌ {getattr(op, '__name__', 'store call')} failed for {identity} "
                f"({e.kind.value}): {e.message}"
            )
            await messenger.send_text(identity, FAILURE_NOTICE)
            return FAILED
