"""
Controller manager.

Feeds Database keys into the work queue and runs a bounded pool of workers
that reconcile them:

- watch loop: every Database event enqueues its key; the watch is
  re-established after errors and stream expiry
- resync loop: lists every Database every resync period so drift is found
  even without events
- workers: N tasks pulling keys; the queue guarantees a key is only
  reconciled by one worker at a time
"""
import asyncio
from typing import List, Optional

import structlog

from dboperator.config.logging import get_logger
from dboperator.config.settings import Settings, settings as default_settings
from dboperator.controllers.database_controller import DatabaseController
from dboperator.core.outcome import ReconcileResult
from dboperator.exceptions import PlatformError, ReconcileTimeoutError
from dboperator.platform.base import Kind, PlatformClient
from dboperator.utils.shutdown import ShutdownHandler
from dboperator.workers.work_queue import WorkQueue

logger = get_logger(__name__)

WATCH_RETRY_SECONDS = 5.0


class ControllerManager:
    """Runs the watch, resync and worker loops until shutdown."""

    def __init__(
        self,
        controller: DatabaseController,
        platform: PlatformClient,
        settings: Optional[Settings] = None,
        queue: Optional[WorkQueue] = None,
        shutdown: Optional[ShutdownHandler] = None,
    ):
        self.controller = controller
        self.platform = platform
        self.settings = settings or default_settings
        self.queue = queue or WorkQueue(
            backoff_base=self.settings.backoff_base_seconds,
            backoff_max=self.settings.backoff_max_seconds,
        )
        self.shutdown = shutdown or ShutdownHandler()
        self.running = False

    async def run(self) -> None:
        """Start all loops and block until shutdown is requested."""
        self.running = True
        logger.info(
            "controller_manager_started",
            workers=self.settings.workers,
            namespace=self.settings.watch_namespace or "*",
            resync_seconds=self.settings.resync_period_seconds,
        )

        feeders = [
            asyncio.create_task(self._watch_loop(), name="watch"),
            asyncio.create_task(self._resync_loop(), name="resync"),
        ]
        workers: List[asyncio.Task] = [
            asyncio.create_task(self._worker(index), name=f"worker-{index}")
            for index in range(self.settings.workers)
        ]

        try:
            await self.shutdown.wait()
        finally:
            logger.info("controller_manager_stopping")
            self.running = False
            self.queue.shutdown()
            for task in feeders:
                task.cancel()
            await asyncio.gather(*feeders, return_exceptions=True)
            # Workers finish their current attempt, then see the closed queue
            await asyncio.gather(*workers, return_exceptions=True)
            logger.info("controller_manager_stopped")

    async def _watch_loop(self) -> None:
        namespace = self.settings.watch_namespace
        while self.running:
            try:
                async for event in self.platform.watch(Kind.DATABASE, namespace):
                    logger.debug("database_event", event_type=event.type, database=event.key)
                    self.queue.add(event.key)
                logger.debug("watch_stream_ended")
            except asyncio.CancelledError:
                raise
            except PlatformError as e:
                logger.warning("watch_failed", error=str(e), reason=e.reason)
                if await self.shutdown.wait_or_shutdown(WATCH_RETRY_SECONDS):
                    return
            except Exception as e:
                logger.error("watch_crashed", error=str(e), exc_info=True)
                if await self.shutdown.wait_or_shutdown(WATCH_RETRY_SECONDS):
                    return

    async def resync(self) -> int:
        """Enqueue every Database. Returns how many were queued."""
        databases = await self.platform.list(Kind.DATABASE, namespace=self.settings.watch_namespace)
        for body in databases:
            metadata = body.get("metadata") or {}
            self.queue.add(f"{metadata.get('namespace', 'default')}/{metadata['name']}")
        return len(databases)

    async def _resync_loop(self) -> None:
        while self.running:
            try:
                count = await self.resync()
                logger.info(
                    "resync_completed",
                    databases=count,
                    next_run_in_seconds=self.settings.resync_period_seconds,
                )
            except PlatformError as e:
                logger.warning("resync_failed", error=str(e), reason=e.reason)

            if await self.shutdown.wait_or_shutdown(self.settings.resync_period_seconds):
                return

    async def _worker(self, index: int) -> None:
        logger.debug("worker_started", worker=index)
        while True:
            key = await self.queue.get()
            if key is None:
                break
            try:
                await self.process(key)
            finally:
                self.queue.done(key)
        logger.debug("worker_stopped", worker=index)

    async def process(self, key: str) -> ReconcileResult:
        """Reconcile one key under the attempt deadline and requeue it."""
        timeout = self.settings.reconcile_timeout_seconds
        with structlog.contextvars.bound_contextvars(database=key):
            try:
                result = await asyncio.wait_for(self.controller.reconcile(key), timeout=timeout)
            except asyncio.TimeoutError:
                error = ReconcileTimeoutError(f"reconcile of {key} exceeded {timeout}s")
                logger.error("reconcile_timeout", timeout_seconds=timeout)
                result = ReconcileResult.failure(error)
            except Exception as e:
                logger.error("reconcile_crashed", error=str(e), exc_info=True)
                result = ReconcileResult.failure(e)

            if result.failed:
                delay = self.queue.add_rate_limited(key)
                logger.info(
                    "reconcile_requeued_with_backoff",
                    retry_in_seconds=delay,
                    failures=self.queue.num_requeues(key),
                )
                return result

            self.queue.forget(key)
            if result.requeue_after is not None:
                self.queue.add_after(key, result.requeue_after)
            return result
