"""
SyncOperationTracker — durable lifecycle of one property's sync attempt.

State machine per attempt:

    pending ──► processing ──► completed
                          └──► failed

Terminal transitions also update the owning PropertyIntegration:

  completed: success_count + 1, error_count = 0, sync_status "active",
             last_sync_at stamped.
  failed:    error_count + 1, sync_status "paused" for RATE_LIMITED (back off
             longer than the in-call retry window) or "error" otherwise.
             RATE_LIMITED also stamps next_retry_at on the operation so the
             next scheduled invocation re-offers the property.

Counter changes are single UPDATE ... SET n = n + 1 statements executed in
the same transaction as the operation update, so concurrent completions can
never lose an increment.

Run-level records (property_id=None) go processing ──► completed | failed, or
straight to cancelled when another run is still processing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, col, select

from pricesync.errors import ErrorCode, InvalidTransitionError
from pricesync.models.property import PropertyIntegration
from pricesync.models.sync import SyncOperation, utcnow

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    "pending": {"processing"},
    "processing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


@dataclass
class SyncFailure:
    """A classified per-property failure, carried as a value to the tracker."""

    code: ErrorCode
    message: str
    status_code: Optional[int] = None
    attempts: int = 0

    @property
    def retry_scheduled(self) -> bool:
        return self.code is ErrorCode.RATE_LIMITED


class SyncOperationTracker:
    """Persists SyncOperation state and integration health counters."""

    def __init__(self, engine, retry_delay_seconds: float = 5.0):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            retry_delay_seconds: Offset for next_retry_at after a rate limit
                (the first in-call backoff interval).
        """
        self.engine = engine
        self.retry_delay_seconds = retry_delay_seconds

    # ─── Per-property lifecycle ───────────────────────────────────────────────

    def create(
        self,
        property_id: str,
        *,
        parent_run_id: Optional[str] = None,
        operation_type: str = "scheduled",
        details: Optional[Dict[str, Any]] = None,
    ) -> SyncOperation:
        op = SyncOperation(
            property_id=property_id,
            parent_run_id=parent_run_id,
            operation_type=operation_type,
            status="pending",
            error_details={"parent_sync_id": parent_run_id, **(details or {})},
        )
        with Session(self.engine) as s:
            s.add(op)
            s.commit()
            s.refresh(op)
        return op

    def mark_processing(self, op_id: str) -> SyncOperation:
        with Session(self.engine) as s:
            op = self._transition(s, op_id, "processing")
            op.started_at = utcnow()
            s.add(op)
            s.commit()
            s.refresh(op)
            return op

    def complete(
        self,
        op_id: str,
        integration_id: Optional[str],
        *,
        attempts: int = 1,
    ) -> SyncOperation:
        now = utcnow()
        with Session(self.engine) as s:
            op = self._transition(s, op_id, "completed")
            self._stamp_finished(op, now)
            op.retry_count = max(attempts - 1, 0)
            s.add(op)
            if integration_id:
                s.connection().execute(
                    update(PropertyIntegration)
                    .where(col(PropertyIntegration.integration_id) == integration_id)
                    .values(
                        success_count=col(PropertyIntegration.success_count) + 1,
                        error_count=0,
                        sync_status="active",
                        last_sync_at=now,
                    )
                )
            s.commit()
            s.refresh(op)
            return op

    def fail(
        self,
        op_id: str,
        integration_id: Optional[str],
        failure: SyncFailure,
    ) -> SyncOperation:
        now = utcnow()
        with Session(self.engine) as s:
            op = self._transition(s, op_id, "failed")
            self._stamp_finished(op, now)
            op.retry_count = max(failure.attempts - 1, 0)
            op.error_code = failure.code.value
            op.error_message = failure.message
            op.error_details = {
                **(op.error_details or {}),
                "error_code": failure.code.value,
                "error_status": failure.status_code,
                "attempts": failure.attempts,
            }
            if failure.retry_scheduled:
                op.next_retry_at = now + timedelta(seconds=self.retry_delay_seconds)
            s.add(op)
            if integration_id:
                s.connection().execute(
                    update(PropertyIntegration)
                    .where(col(PropertyIntegration.integration_id) == integration_id)
                    .values(
                        error_count=col(PropertyIntegration.error_count) + 1,
                        sync_status="paused" if failure.retry_scheduled else "error",
                    )
                )
            s.commit()
            s.refresh(op)
            return op

    # ─── Run-level records ────────────────────────────────────────────────────

    def start_run(
        self,
        *,
        operation_type: str = "scheduled",
        details=None,
        message: Optional[str] = None,
        status: str = "processing",
    ) -> SyncOperation:
        """
        Create the run-level orchestration record (property_id=None).

        A run with nothing to do is recorded directly as "completed".
        """
        run = SyncOperation(
            property_id=None,
            operation_type=operation_type,
            status=status,
            error_message=message,
            error_details=details,
        )
        if status != "processing":
            run.completed_at = run.started_at
            run.duration_ms = 0
        with Session(self.engine) as s:
            s.add(run)
            s.commit()
            s.refresh(run)
        return run

    def concurrent_runs(self, run_id: str, since: datetime) -> List[SyncOperation]:
        """Other run-level records still processing that started after `since`."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(SyncOperation).where(
                    col(SyncOperation.property_id).is_(None),
                    col(SyncOperation.status) == "processing",
                    col(SyncOperation.started_at) >= since,
                    col(SyncOperation.id) != run_id,
                )
            ).all())

    def finish_run(self, run_id: str, summary: Dict[str, Any]) -> Optional[SyncOperation]:
        """
        Record the run summary on the originating record.

        Partial success still counts as "completed": the per-property rows
        carry the failures.
        """
        with Session(self.engine) as s:
            run = s.get(SyncOperation, run_id)
            if run is None:
                logger.warning("Run record %s not found; summary not persisted", run_id)
                return None
            run.status = "completed"
            run.completed_at = utcnow()
            run.duration_ms = summary.get("execution_time_ms")
            run.error_details = {
                **summary,
                "partial_success": summary.get("failed_syncs", 0) > 0,
            }
            s.add(run)
            s.commit()
            s.refresh(run)
            return run

    def fail_run(self, run_id: str, message: str) -> Optional[SyncOperation]:
        """Mark a run that aborted before producing a summary as "failed"."""
        return self._close_run(run_id, "failed", ErrorCode.SYNC_FAILED, message)

    def cancel_run(self, run_id: str, message: str) -> Optional[SyncOperation]:
        """Mark a run refused because another one is still processing."""
        return self._close_run(run_id, "cancelled", ErrorCode.CONCURRENT_EXECUTION, message)

    def _close_run(
        self, run_id: str, status: str, code: ErrorCode, message: str
    ) -> Optional[SyncOperation]:
        now = utcnow()
        with Session(self.engine) as s:
            run = s.get(SyncOperation, run_id)
            if run is None:
                logger.warning("Run record %s not found; cannot mark it %s", run_id, status)
                return None
            run.status = status
            self._stamp_finished(run, now)
            run.error_code = code.value
            run.error_message = message
            s.add(run)
            s.commit()
            s.refresh(run)
            return run

    def expire_stale(self, older_than: timedelta) -> int:
        """
        Fail per-property records left pending/processing by a killed run.

        Returns the number of records expired. The properties are then safe
        to re-attempt (at-least-once delivery).
        """
        cutoff = utcnow() - older_than
        with Session(self.engine) as s:
            stale = s.exec(
                select(SyncOperation).where(
                    col(SyncOperation.property_id).is_not(None),
                    or_(
                        col(SyncOperation.status) == "pending",
                        col(SyncOperation.status) == "processing",
                    ),
                    col(SyncOperation.started_at) < cutoff,
                )
            ).all()
            now = utcnow()
            for op in stale:
                op.status = "failed"
                op.completed_at = now
                op.error_code = ErrorCode.STALE_OPERATION.value
                op.error_message = "Operation abandoned by an earlier invocation"
                s.add(op)
            s.commit()
        if stale:
            logger.warning("Expired %d stale sync operation(s)", len(stale))
        return len(stale)

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _transition(s: Session, op_id: str, target: str) -> SyncOperation:
        op = s.get(SyncOperation, op_id)
        if op is None:
            raise InvalidTransitionError(f"Sync operation {op_id} does not exist")
        if target not in _TRANSITIONS.get(op.status, set()):
            raise InvalidTransitionError(
                f"Sync operation {op_id} cannot move from {op.status} to {target}"
            )
        op.status = target
        return op

    @staticmethod
    def _stamp_finished(op: SyncOperation, now: datetime) -> None:
        op.completed_at = now
        op.duration_ms = int((now - op.started_at).total_seconds() * 1000)
