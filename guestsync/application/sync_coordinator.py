from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from guestsync.application.action_dispatch import ActionDispatcher
from guestsync.application.connectivity import ConnectivityMonitor
from guestsync.core.metrics import MetricsRegistry, measure_time, metrics_registry
from guestsync.core.observability import OperationContext, log_event
from guestsync.core.operational_logging import log_operational_error
from guestsync.domain.actions import PendingAction
from guestsync.domain.ports import HapticFeedback, PendingActionQueue, SyncNotifier
from guestsync.domain.sync_errors import StorageUnavailableError, classify_sync_error
from guestsync.domain.sync_models import DrainReport, ReplayFailure, SyncState

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SyncCoordinator:
    """Replays the pending queue in order, one pass at a time.

    A failed entry stays queued for the next pass and never blocks the
    entries behind it. At most one pass runs at any moment.
    """

    def __init__(
        self,
        queue: PendingActionQueue,
        dispatcher: ActionDispatcher,
        *,
        notifier: SyncNotifier | None = None,
        haptics: HapticFeedback | None = None,
        resolve_temporary_ids: bool = False,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._haptics = haptics
        self._resolve_temporary_ids = resolve_temporary_ids
        self._metrics = metrics or metrics_registry
        self._draining = False
        self._task: asyncio.Task[DrainReport] | None = None
        self._unsubscribe = None
        self.last_report: DrainReport | None = None

    @property
    def state(self) -> SyncState:
        return SyncState.DRAINING if self._draining else SyncState.IDLE

    def trigger(self) -> asyncio.Task[DrainReport] | None:
        """Starts a background pass unless one is already running."""
        if self._draining or (self._task is not None and not self._task.done()):
            logger.debug("sync_trigger_ignored state=%s", self.state.value)
            return None
        self._task = asyncio.create_task(self.drain(), name="guestsync-drain")
        return self._task

    async def wait_idle(self) -> DrainReport | None:
        if self._task is None:
            return self.last_report
        return await self._task

    def attach(self, monitor: ConnectivityMonitor) -> None:
        self.detach()
        self._unsubscribe = monitor.subscribe(self._on_connectivity_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def drain(self) -> DrainReport:
        if self._draining:
            return DrainReport.skipped_report()
        self._draining = True
        try:
            with OperationContext("sync_drain"):
                report = await self._drain_pass()
        finally:
            self._draining = False
        self.last_report = report
        return report

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("connectivity_restored_triggering_sync")
            self.trigger()

    @measure_time("latency.drain_pass_ms")
    async def _drain_pass(self) -> DrainReport:
        started_at = _now_iso()
        try:
            pending = await self._queue.list_pending()
        except StorageUnavailableError as exc:
            log_operational_error("Pending queue unavailable; sync pass skipped", exc=exc)
            return DrainReport(started_at=started_at, finished_at=_now_iso())
        if not pending:
            return DrainReport(started_at=started_at, finished_at=_now_iso())

        self._metrics.increment("sync_passes")
        failures: list[ReplayFailure] = []
        replayed: list[int] = []
        for action in pending:
            failure = await self._replay_one(action)
            if failure is None:
                replayed.append(action.seq)
            else:
                failures.append(failure)

        report = DrainReport(
            started_at=started_at,
            finished_at=_now_iso(),
            attempted=len(pending),
            succeeded=len(replayed),
            failures=tuple(failures),
            replayed_seqs=tuple(replayed),
        )
        log_event(
            logger,
            "sync_pass_finished",
            {"attempted": report.attempted, "succeeded": report.succeeded, "failed": report.failed},
        )
        if report.succeeded:
            self._announce(report.succeeded)
        return report

    async def _replay_one(self, action: PendingAction) -> ReplayFailure | None:
        try:
            if self._resolve_temporary_ids:
                action = await self._resolved(action)
            await self._dispatcher.replay(action)
            await self._queue.dequeue(action.seq)
        except Exception as exc:  # noqa: BLE001
            return self._record_failure(action, exc)
        self._metrics.increment("sync_actions_replayed")
        logger.info("action_replayed seq=%s kind=%s", action.seq, action.kind.value)
        return None

    async def _resolved(self, action: PendingAction) -> PendingAction:
        resolved = await self._dispatcher.resolve_temporary_ids(action)
        if resolved is not action:
            await self._queue.rewrite_payload(resolved.seq, resolved.payload)
            logger.info("action_ids_resolved seq=%s kind=%s", action.seq, action.kind.value)
        return resolved

    def _record_failure(self, action: PendingAction, exc: Exception) -> ReplayFailure:
        category = classify_sync_error(exc)
        self._metrics.increment("sync_actions_failed")
        if category == "network":
            logger.warning("action_replay_deferred seq=%s kind=%s reason=%s", action.seq, action.kind.value, exc)
        else:
            log_operational_error(
                "Pending action replay failed",
                exc=exc,
                extra={"seq": action.seq, "kind": action.kind.value, "category": category},
            )
        return ReplayFailure(
            seq=action.seq,
            kind=action.kind,
            category=category,
            message=str(exc),
            status_code=getattr(exc, "status_code", None),
        )

    def _announce(self, changes: int) -> None:
        try:
            if self._notifier is not None:
                self._notifier.notify_sync_completed(changes)
            if self._haptics is not None:
                self._haptics.success()
        except Exception as exc:  # noqa: BLE001
            log_operational_error("Sync completion feedback failed", exc=exc, extra={"changes": changes})
