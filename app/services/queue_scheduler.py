"""
Queue scheduler for calls against the rate-limited generative service.

One drain loop per scheduler owns a FIFO of pending entries and runs them one
at a time.  Two pacing rules apply:

* ``min_delay``: no call starts sooner than ``min_delay`` seconds after the
  previous call finished (``last_call_time``).
* rate-limit retries: an entry whose operation fails with a throttling error
  is retried in place (the queue does not advance) after a backoff sleep that
  grows with the entry's retry count.  Any other error rejects the entry
  immediately.

Usage
-----
    scheduler = QueueScheduler(min_delay=1.0, retry_policy=RetryPolicy())
    text = await scheduler.submit(lambda: client.generate(prompt))
"""
from __future__ import annotations

import asyncio
import collections
import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable, Deque, Optional

import httpx

from app.services.gemini_client import RateLimitedError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


def is_rate_limited(exc: BaseException) -> bool:
    """Return True if *exc* signals upstream throttling (HTTP 429)."""
    if isinstance(exc, RateLimitedError):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    return "429" in str(exc)


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff curve for throttled calls."""

    max_retries: int = 3
    base_delay: float = 2.0  # seconds
    exponential: bool = False
    is_retryable: Callable[[BaseException], bool] = is_rate_limited

    def backoff_for(self, retry_count: int) -> float:
        """Seconds to sleep before retry number *retry_count* (1-based)."""
        if self.exponential:
            return self.base_delay * (2 ** (retry_count - 1))
        return self.base_delay * retry_count


# ---------------------------------------------------------------------------
# Queue entry
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class QueueEntry:
    operation: Operation
    future: asyncio.Future
    enqueued_at: float
    retry_count: int = 0


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class QueueScheduler:
    """Serializes operations with a minimum inter-call delay and 429 retries."""

    def __init__(
        self,
        min_delay: float = 1.0,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_delay = min_delay
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock

        self.last_call_time: Optional[float] = None
        self.is_processing: bool = False
        self._pending: Deque[QueueEntry] = collections.deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._current: Optional[QueueEntry] = None

    @property
    def queue_depth(self) -> int:
        return len(self._pending)

    async def submit(self, operation: Operation) -> Any:
        """
        Enqueue *operation* and wait for its outcome.

        Returns the operation's result, or raises the terminal error (a
        non-retryable error, or the last throttling error once the retry
        budget is spent).  If the caller stops waiting (cancellation), an
        entry that has not started yet is skipped by the drain loop.
        """
        loop = asyncio.get_running_loop()
        entry = QueueEntry(
            operation=operation,
            future=loop.create_future(),
            enqueued_at=self._clock(),
        )
        self._pending.append(entry)
        logger.debug("submit: queue depth now %d", len(self._pending))

        if not self.is_processing:
            self.is_processing = True
            self._drain_task = asyncio.create_task(self._drain())

        return await entry.future

    async def close(self) -> None:
        """Stop the drain loop and cancel everything still queued."""
        if self._current is not None and not self._current.future.done():
            self._current.future.cancel()
        while self._pending:
            entry = self._pending.popleft()
            if not entry.future.done():
                entry.future.cancel()

        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._drain_task = None
        self.is_processing = False

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        try:
            while self._pending:
                entry = self._pending.popleft()
                if entry.future.cancelled():
                    logger.info(
                        "Skipping queued call abandoned by its caller (waited %.2f s)",
                        self._clock() - entry.enqueued_at,
                    )
                    continue
                self._current = entry
                try:
                    await self._run_entry(entry)
                finally:
                    self._current = None
        finally:
            self.is_processing = False

    async def _run_entry(self, entry: QueueEntry) -> None:
        policy = self.retry_policy
        while True:
            if entry.future.cancelled():
                logger.info("Dropping retries for a call abandoned by its caller")
                return
            await self._wait_for_slot()
            try:
                result = await entry.operation()
            except Exception as exc:
                self.last_call_time = self._clock()

                if policy.is_retryable(exc) and entry.retry_count < policy.max_retries:
                    entry.retry_count += 1
                    delay = policy.backoff_for(entry.retry_count)
                    logger.warning(
                        "Rate limited (retry %d/%d), backing off %.2f s",
                        entry.retry_count,
                        policy.max_retries,
                        delay,
                    )
                    await self._sleep(delay)
                    continue

                if policy.is_retryable(exc):
                    logger.error(
                        "Rate limit retries exhausted after %d attempts: %s",
                        entry.retry_count + 1,
                        exc,
                    )
                else:
                    logger.error("Queued call failed: %s", exc)

                if not entry.future.done():
                    entry.future.set_exception(exc)
                return

            self.last_call_time = self._clock()
            if not entry.future.done():
                entry.future.set_result(result)
            return

    async def _wait_for_slot(self) -> None:
        if self.last_call_time is None:
            return
        elapsed = self._clock() - self.last_call_time
        if elapsed < self.min_delay:
            wait = self.min_delay - elapsed
            logger.debug("Pacing: waiting %.3f s before next call", wait)
            await self._sleep(wait)
