# ============================================================================
# AEGIS Sync — Reconciliation Engine
# ============================================================================
# One pass: select unsynced reports oldest first, send them in ordered
# pages, mark each accepted page synced. Passes never overlap; a trigger
# that arrives mid-pass causes exactly one more pass afterwards.
# ============================================================================

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from app.errors import NetworkError, StorageError
from app.store import PENDING, ReportStore

from .authority import BatchResult, RemoteAuthority

logger = logging.getLogger("aegis.sync")


class SyncOutcome(str, Enum):
    SKIPPED = "skipped"
    UP_TO_DATE = "up_to_date"
    SYNCED = "synced"
    FAILED = "failed"
    COALESCED = "coalesced"


class SyncStatus(str, Enum):
    """Status signal for the presentation layer."""
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"
    UP_TO_DATE = "up_to_date"


@dataclass
class SyncResult:
    outcome: SyncOutcome
    attempted: int = 0
    synced: int = 0
    batches: int = 0
    error: Optional[str] = None
    finished_at: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "outcome": self.outcome.value,
            "attempted": self.attempted,
            "synced": self.synced,
            "batches": self.batches,
            "error": self.error,
            "finished_at": self.finished_at,
        }


StatusListener = Callable[[SyncStatus, Optional[SyncResult]], None]


class SyncEngine:
    """
    Reconciles local reports with the remote authority.

    Network failures never raise out of sync(); they end the pass as
    FAILED and leave the remaining reports pending. StorageError from the
    local store is published as FAILED and then raised.
    """

    def __init__(
        self,
        store: ReportStore,
        authority: RemoteAuthority,
        device_id: str,
        batch_size: int = 100,
    ):
        self.store = store
        self.authority = authority
        self.device_id = device_id
        self.batch_size = max(1, int(batch_size))
        self.last_result: Optional[SyncResult] = None

        self._state_lock = threading.Lock()
        self._in_flight = False
        self._rerun = False
        self._status_listeners: List[StatusListener] = []

    # ---- Triggers ----

    def sync(self) -> SyncResult:
        """Run a pass, or fold this request into the pass already running."""
        with self._state_lock:
            if self._in_flight:
                self._rerun = True
                logger.info("[SYNC] Pass in flight, trigger coalesced")
                return SyncResult(SyncOutcome.COALESCED)
            self._in_flight = True

        try:
            while True:
                result = self._run_pass()
                with self._state_lock:
                    if not self._rerun:
                        self._in_flight = False
                        return result
                    self._rerun = False
                logger.info("[SYNC] Running coalesced follow-up pass")
        except BaseException:
            with self._state_lock:
                self._in_flight = False
                self._rerun = False
            raise

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def bind_connectivity(self, monitor) -> Callable[[], None]:
        """Sync on every offline-to-online transition."""

        def _on_change(online: bool):
            if online:
                logger.info("[SYNC] Connectivity regained, starting sync")
                self.sync()

        return monitor.on_change(_on_change)

    # ---- Status ----

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe():
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _notify(self, status: SyncStatus, result: Optional[SyncResult] = None):
        for listener in list(self._status_listeners):
            try:
                listener(status, result)
            except Exception as e:
                logger.error(f"[SYNC] status listener failed: {e}")

    # ---- Pass ----

    def _finish(self, result: SyncResult) -> SyncResult:
        result.finished_at = int(time.time() * 1000)
        self.last_result = result
        return result

    def _run_pass(self) -> SyncResult:
        if self.store.get_session() is None:
            logger.debug("[SYNC] No active session, skipping")
            return self._finish(SyncResult(SyncOutcome.SKIPPED))

        try:
            return self._reconcile()
        except StorageError as e:
            logger.error(f"[SYNC] Local store failed during sync: {e}")
            result = self._finish(SyncResult(SyncOutcome.FAILED, error=str(e)))
            self._notify(SyncStatus.FAILED, result)
            raise

    def _reconcile(self) -> SyncResult:
        pending = self.store.query(PENDING).all()
        if not pending:
            logger.info("[SYNC] No reports to sync")
            result = self._finish(SyncResult(SyncOutcome.UP_TO_DATE))
            self._notify(SyncStatus.UP_TO_DATE, result)
            return result

        logger.info(f"[SYNC] Attempting to sync {len(pending)} report(s)")
        self._notify(SyncStatus.SYNCING)

        synced = 0
        batches = 0
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            batch_result = self._submit(batch)

            if not batch_result.success:
                logger.warning(
                    f"[SYNC] Batch {batches + 1} failed ({batch_result.error}); "
                    f"{len(pending) - start} report(s) remain pending"
                )
                result = self._finish(SyncResult(
                    SyncOutcome.FAILED,
                    attempted=len(pending),
                    synced=synced,
                    batches=batches,
                    error=batch_result.error,
                ))
                self._notify(SyncStatus.FAILED, result)
                return result

            synced += self.store.mark_synced(r.id for r in batch)
            batches += 1

        logger.info(f"[SYNC] {synced} report(s) successfully marked as synced")
        result = self._finish(SyncResult(
            SyncOutcome.SYNCED,
            attempted=len(pending),
            synced=synced,
            batches=batches,
        ))
        self._notify(SyncStatus.SYNCED, result)
        return result

    def _submit(self, batch) -> BatchResult:
        try:
            return self.authority.submit_batch(self.device_id, batch)
        except (NetworkError, TimeoutError, OSError) as e:
            return BatchResult.fail(str(e))
