"""Background sync: timer passes, debounced file changes, and parking.

``BackgroundSyncManager`` owns no sync logic of its own.  It schedules
passes on any ``Syncer`` (normally ``SyncEngine``) and guarantees that at
most one pass runs at a time.

* A timer triggers a pass every ``poll_interval`` seconds.  After failed
  passes the interval backs off as ``poll_interval * 2**n`` capped at
  ``max_backoff``.
* ``enqueue(path)`` records a local change; once no new change has arrived
  for ``debounce`` seconds the collected paths are synced together.
* A document that fails ``max_consecutive_failures`` passes in a row is
  parked and skipped until ``retry_parked()`` is called.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from ..config_schema import BackgroundConfig
from ..core.ports import Syncer
from ..errors import PlanUnsafe
from .models import PassContext, PassSummary

logger = logging.getLogger(__name__)


class ManagerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class BackgroundSyncManager:
    """Schedule sync passes and track per-document failures.

    Args:
        syncer: Object with an async ``run_pass(context, paths)``.
        config: Background settings.
    """

    def __init__(self, syncer: Syncer, config: BackgroundConfig | None = None):
        self._syncer = syncer
        self._config = config or BackgroundConfig()
        self._lock = asyncio.Lock()
        self._context: PassContext | None = None
        self._state = ManagerState.IDLE
        self._last_summary: PassSummary | None = None
        self._last_error: str | None = None
        self._consecutive_pass_failures = 0
        self._failures: dict[str, int] = {}
        self._parked: set[str] = set()
        self._pending: dict[str, float] = {}
        self._timer_task: asyncio.Task | None = None
        self._debounce_task: asyncio.Task | None = None
        self._stopping = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def parked(self) -> frozenset[str]:
        return frozenset(self._parked)

    @property
    def last_summary(self) -> PassSummary | None:
        return self._last_summary

    def next_interval(self) -> float:
        """Seconds until the next timer pass, including failure backoff."""
        base = self._config.poll_interval
        n = self._consecutive_pass_failures
        if n == 0:
            return base
        return min(base * (2**n), self._config.max_backoff)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def sync_now(
        self, paths: list[str] | None = None, dry_run: bool = False
    ) -> PassSummary | dict[str, Any]:
        """Run one pass now.

        If a pass is already running, nothing new is started and the
        running pass's progress is returned instead.
        """
        if self._lock.locked() and self._context is not None:
            logger.debug("Pass already running; returning progress")
            return self._context.progress()

        async with self._lock:
            context = PassContext(
                skip_paths=frozenset(self._parked), dry_run=dry_run
            )
            self._context = context
            self._state = ManagerState.RUNNING
            try:
                summary = await self._syncer.run_pass(context, paths)
            except PlanUnsafe as exc:
                logger.warning("Pass refused: %s", exc)
                self._pass_failed(str(exc))
                raise
            except Exception as exc:
                logger.error("Sync pass failed: %s", exc)
                self._pass_failed(str(exc))
                raise
            finally:
                self._context = None

            self._record(summary)
            self._consecutive_pass_failures = 0
            self._last_error = None
            self._state = ManagerState.IDLE
            self._last_summary = summary
            return summary

    def _pass_failed(self, message: str) -> None:
        self._consecutive_pass_failures += 1
        self._last_error = message
        self._state = ManagerState.ERROR

    def _record(self, summary: PassSummary) -> None:
        if summary.dry_run:
            return
        limit = self._config.max_consecutive_failures
        for result in summary.results:
            path = result.local_path
            if not path:
                continue
            if result.success:
                self._failures.pop(path, None)
                continue
            count = self._failures.get(path, 0) + 1
            self._failures[path] = count
            if count >= limit and path not in self._parked:
                self._parked.add(path)
                logger.warning(
                    "Parked %s after %d consecutive failures: %s",
                    path,
                    count,
                    result.error,
                )

    def cancel(self) -> bool:
        """Request cancellation of the running pass, if any."""
        if self._context is None:
            return False
        self._context.cancel()
        logger.info("Cancellation requested")
        return True

    def retry_parked(self, paths: list[str] | None = None) -> list[str]:
        """Unpark *paths* (all when omitted) and reset their failure counts."""
        targets = set(paths) if paths is not None else set(self._parked)
        released = sorted(self._parked & targets)
        for path in released:
            self._parked.discard(path)
            self._failures.pop(path, None)
        if released:
            logger.info("Unparked %d document(s)", len(released))
        return released

    # ------------------------------------------------------------------
    # Debounced local changes
    # ------------------------------------------------------------------

    def enqueue(self, path: str) -> None:
        """Note a local change to *path*; syncs after the debounce window."""
        loop = asyncio.get_running_loop()
        self._pending[path] = loop.time()
        if self._debounce_task is None or self._debounce_task.done():
            self._debounce_task = loop.create_task(self._debounce_loop())

    async def _debounce_loop(self) -> None:
        loop = asyncio.get_running_loop()
        debounce = self._config.debounce
        while self._pending:
            newest = max(self._pending.values())
            wait = newest + debounce - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
                continue
            if self._lock.locked():
                # Wait out the running pass, then re-check the window
                async with self._lock:
                    pass
                continue
            paths = sorted(self._pending)
            self._pending.clear()
            try:
                result = await self.sync_now(paths)
            except Exception as exc:
                logger.warning("Debounced sync of %d path(s) failed: %s",
                               len(paths), exc)
                continue
            if not isinstance(result, PassSummary):
                # Another pass started first; keep the paths queued
                now = loop.time()
                for path in paths:
                    self._pending.setdefault(path, now)

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self._config.enabled:
            logger.info("Background sync disabled by configuration")
            return
        if self._timer_task is not None and not self._timer_task.done():
            return
        self._stopping = False
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            "Background sync started (every %ss)", self._config.poll_interval
        )

    async def stop(self) -> None:
        self._stopping = True
        self.cancel()
        for task in (self._timer_task, self._debounce_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timer_task = None
        self._debounce_task = None
        logger.info("Background sync stopped")

    async def _timer_loop(self) -> None:
        while not self._stopping:
            await asyncio.sleep(self.next_interval())
            if self._stopping:
                break
            try:
                await self.sync_now()
            except Exception as exc:
                logger.warning(
                    "Timer pass failed; next attempt in %.0fs: %s",
                    self.next_interval(),
                    exc,
                )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "state": self._state.value,
            "running": self.is_running,
            "parked": sorted(self._parked),
            "pending": sorted(self._pending),
            "consecutive_failures": self._consecutive_pass_failures,
            "next_interval": self.next_interval(),
            "last_error": self._last_error,
        }
        if self._context is not None:
            status["progress"] = self._context.progress()
        if self._last_summary is not None:
            status["last_summary"] = self._last_summary.counts()
        return status
