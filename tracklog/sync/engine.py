"""Sync engine: push/pull cycles between the local store and the remote document.

At most one cycle is in flight at a time. The guard is the ``syncing``
status itself, set synchronously before the cycle task is created, so a
burst of triggers within one event-loop tick launches exactly one cycle.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from ..errors import TrackerError
from ..store import DataStore, merge_datasets
from .gist_client import GistClient

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Process-wide sync phase shown to the user."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class SyncResult:
    """Result of a sync cycle."""

    success: bool
    skipped: bool = False
    entries_pushed: int = 0
    entities_pulled: int = 0
    deletions_confirmed: int = 0
    error: str | None = None
    timestamp: datetime | None = None


StatusListener = Callable[[SyncStatus], None]


class SyncEngine:
    """Owns the sync status state machine and runs sync cycles.

    A cycle reads the remote document, writes back the local dataset plus any
    remote-only entities (minus pending deletions), and only after that write
    succeeds folds the remote-only entities into the store and clears the
    deletions it carried. A failed cycle touches neither the dataset nor the
    pending deletions.
    """

    def __init__(
        self,
        store: DataStore,
        remote: GistClient,
        error_display_seconds: float | None = 2.5,
    ):
        """Initialize the engine.

        Args:
            store: Local data store.
            remote: Client for the remote document.
            error_display_seconds: How long ``error`` is shown before falling
                back to ``idle``. None keeps it until the next cycle.
        """
        self.store = store
        self.remote = remote
        self.error_display_seconds = error_display_seconds
        self._status = SyncStatus.IDLE
        self._listeners: list[StatusListener] = []
        self._task: asyncio.Task | None = None
        self._error_timer: asyncio.TimerHandle | None = None
        self._unsubscribe_store: Callable[[], None] | None = None
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    # ------------------------------------------------------------
    # Status observable
    # ------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener called with every new status.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_status(self, status: SyncStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Sync status listener failed: {e}", exc_info=True)

    def _schedule_error_reset(self) -> None:
        if self.error_display_seconds is None:
            return
        loop = asyncio.get_running_loop()
        self._error_timer = loop.call_later(self.error_display_seconds, self._clear_error)

    def _clear_error(self) -> None:
        self._error_timer = None
        if self._status is SyncStatus.ERROR:
            self._set_status(SyncStatus.IDLE)

    def _cancel_error_reset(self) -> None:
        if self._error_timer is not None:
            self._error_timer.cancel()
            self._error_timer = None

    # ------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------

    def attach(self) -> None:
        """Trigger a sync cycle after every store mutation."""
        if self._unsubscribe_store is None:
            self._unsubscribe_store = self.store.subscribe(self._on_store_change)

    def detach(self) -> None:
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None

    def _on_store_change(self, _data: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, sync deferred to next cycle")
            return
        self.request_sync()

    def _launch(
        self, cycle: Callable[[], Awaitable[SyncResult]]
    ) -> asyncio.Task | None:
        if not self.remote.is_configured:
            return None
        if self._status is SyncStatus.SYNCING:
            logger.debug("Sync already in flight, trigger coalesced")
            return self._task

        loop = asyncio.get_running_loop()
        self._cancel_error_reset()
        self._set_status(SyncStatus.SYNCING)
        self._task = loop.create_task(self._guarded(cycle))
        self._task.add_done_callback(self._log_crash)
        return self._task

    @staticmethod
    def _log_crash(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Sync task crashed: {exc!r}", exc_info=exc)

    async def _guarded(self, cycle: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
        try:
            result = await cycle()
        except TrackerError as e:
            logger.error(f"Sync failed: {e}")
            self._consecutive_failures += 1
            self._set_status(SyncStatus.ERROR)
            self._schedule_error_reset()
            return SyncResult(success=False, error=str(e), timestamp=datetime.now())
        except BaseException:
            self._set_status(SyncStatus.ERROR)
            self._schedule_error_reset()
            raise

        self._consecutive_failures = 0
        self._last_sync = result.timestamp
        self._set_status(SyncStatus.IDLE)
        return result

    def request_sync(self) -> asyncio.Task | None:
        """Start a sync cycle unless one is already running.

        Returns:
            The in-flight cycle task, or None if sync is not configured.
        """
        return self._launch(self._sync_cycle)

    async def sync(self) -> SyncResult:
        """Run (or join) a sync cycle and wait for its result."""
        task = self.request_sync()
        if task is None:
            return SyncResult(success=True, skipped=True)
        return await task

    async def _sync_cycle(self) -> SyncResult:
        tombstones = self.store.tombstones()
        local = self.store.snapshot()

        remote = await self.remote.load()
        payload = merge_datasets(local, remote, tombstones)
        pushed = await self.remote.push(payload, tombstones)

        pulled = self.store.merge_remote(remote, tombstones)
        cleared = self.store.confirm_deletions(pushed.confirmed_deletions)

        logger.info(
            f"Sync complete: pushed={len(pushed.written.entries)} entries, "
            f"pulled={pulled}, deletions_confirmed={cleared}"
        )
        return SyncResult(
            success=True,
            entries_pushed=len(pushed.written.entries),
            entities_pulled=pulled,
            deletions_confirmed=cleared,
            timestamp=pushed.timestamp or datetime.now(),
        )

    async def load_remote(self) -> SyncResult:
        """Replace local data with the remote document (force refresh).

        Pending deletions are dropped along with the local data.
        """
        while self._status is SyncStatus.SYNCING and self._task is not None:
            await self._task

        task = self._launch(self._load_cycle)
        if task is None:
            return SyncResult(success=True, skipped=True)
        return await task

    async def _load_cycle(self) -> SyncResult:
        data = await self.remote.load()
        self.store.replace_data(data)
        logger.info(f"Loaded {len(data.entries)} entries from remote")
        return SyncResult(
            success=True,
            entities_pulled=sum(data.count().values()),
            timestamp=datetime.now(),
        )

    # ------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------

    async def backup(self) -> None:
        """Copy the current dataset to the backup document.

        Errors propagate to the caller; the sync status is not affected.
        """
        await self.remote.backup(self.store.snapshot())

    async def restore_from_backup(self) -> asyncio.Task | None:
        """Replace local data with the backup document, then push it.

        Returns:
            The sync task pushing the restored data, if sync is configured.
        """
        data = await self.remote.restore_from_backup()
        self.store.replace_data(data)
        logger.info(f"Restored {len(data.entries)} entries from backup")
        return self.request_sync()

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def run(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run sync cycles on a fixed interval.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            result = await self.sync()
            if not result.skipped:
                logger.debug(f"Periodic sync: success={result.success}")

            # Back off after consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    async def aclose(self) -> None:
        """Stop reacting to mutations and wait for an in-flight cycle."""
        self.detach()
        self._cancel_error_reset()
        if self._task is not None and not self._task.done():
            await self._task

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last successful cycle."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        tombstones = self.store.tombstones()
        return {
            "status": self._status.value,
            "configured": self.remote.is_configured,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "pending_deletions": sum(len(ids) for ids in tombstones.values()),
        }
