"""
Keyed, de-duplicating work queue.

A key sits in the queue at most once and is never handed to two workers at
the same time. Adding a key that is currently being processed marks it dirty;
it goes back into the queue when the worker calls done().
"""
import asyncio
from collections import deque
from typing import Deque, Dict, Optional, Set, Tuple

from dboperator.config.logging import get_logger
from dboperator.services import metrics
from dboperator.utils.retry import backoff_delay

logger = get_logger(__name__)


class WorkQueue:
    """
    Work queue of resource keys for the reconcile workers.

    Failure backoff is tracked per key: every add_rate_limited() doubles the
    delay until forget() is called after a successful attempt.
    """

    def __init__(self, backoff_base: float = 5.0, backoff_max: float = 300.0):
        """
        Initialize work queue.

        Args:
            backoff_base: Delay after the first failure in seconds
            backoff_max: Upper bound of the failure delay in seconds
        """
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._queue: Deque[str] = deque()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._waiting: Dict[str, Tuple[float, asyncio.TimerHandle]] = {}
        self._changed = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def _update_gauges(self) -> None:
        metrics.queue_depth.set(len(self._queue))
        metrics.queue_processing.set(len(self._processing))

    def add(self, key: str) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._changed.set()
        self._update_gauges()

    def add_after(self, key: str, delay: float) -> None:
        """
        Queue a key once delay seconds have passed.

        Only the earliest pending timer per key is kept.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._waiting.get(key)
        if pending is not None:
            if pending[0] <= when:
                return
            pending[1].cancel()
        handle = loop.call_at(when, self._fire, key)
        self._waiting[key] = (when, handle)

    def _fire(self, key: str) -> None:
        self._waiting.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: str) -> float:
        """
        Queue a key after its failure backoff.

        Returns:
            The delay applied in seconds
        """
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        delay = backoff_delay(failures, self.backoff_base, self.backoff_max)
        metrics.queue_retries_total.inc()
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the failure backoff of a key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> Optional[str]:
        """
        Wait for the next key.

        Returns:
            The key, or None once the queue is shut down
        """
        while True:
            if self._shutting_down:
                return None
            if self._queue:
                break
            self._changed.clear()
            await self._changed.wait()

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        self._update_gauges()
        return key

    def done(self, key: str) -> None:
        """Mark a key processed, re-queueing it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.append(key)
            self._changed.set()
        self._update_gauges()

    def shutdown(self) -> None:
        """Stop handing out keys and cancel pending timers."""
        self._shutting_down = True
        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._changed.set()
        logger.info("work_queue_shutdown", pending=len(self._queue), processing=len(self._processing))
