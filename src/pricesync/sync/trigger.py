"""
Scheduled trigger construction.

An external scheduler (cron, or the store's own job scheduler) fires one
invocation at a time. For a scheduled run the set of properties is read from
the store:

  - integration has sync enabled and a credential
  - sync_status is not "error" or "disabled"
  - "paused" integrations (rate limited last time) only once the latest
    operation's next_retry_at has passed

Every scheduled invocation leaves a run-level SyncOperation: the dispatcher
records the summary on it, and a run that overlaps one still in progress is
recorded as "cancelled" instead of pushing the same properties twice.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlmodel import Session, col, select

from pricesync.models.property import Property, PropertyIntegration
from pricesync.models.sync import SyncOperation, utcnow
from pricesync.sync.schemas import SyncTrigger, TriggerProperty
from pricesync.sync.tracker import SyncOperationTracker

logger = logging.getLogger(__name__)

EXCLUDED_STATUSES = ("error", "disabled")
NOTHING_DUE = "No properties configured for sync"


def select_properties(engine, now: Optional[datetime] = None) -> list:
    """Return TriggerProperty entries for every integration due for sync."""
    now = now or utcnow()
    with Session(engine) as s:
        rows = s.exec(
            select(PropertyIntegration, Property)
            .join(Property, col(Property.id) == col(PropertyIntegration.property_id))
            .where(
                col(PropertyIntegration.sync_enabled).is_(True),
                col(PropertyIntegration.api_key).is_not(None),
                col(PropertyIntegration.sync_status).not_in(EXCLUDED_STATUSES),
            )
            .order_by(col(Property.name))
        ).all()

        retry_at = _latest_retry_times(
            s, [i.property_id for i, _ in rows if i.sync_status == "paused"]
        )

    selected = []
    for integration, prop in rows:
        if integration.sync_status == "paused":
            due = retry_at.get(integration.property_id)
            if due is not None and due > now:
                logger.info("Property %s paused until %s; skipping", prop.id, due)
                continue
        selected.append(
            TriggerProperty(
                property_id=prop.id,
                external_property_id=integration.external_property_id,
                display_name=prop.name,
                integration_id=integration.integration_id,
            )
        )
    return selected


def _latest_retry_times(s: Session, property_ids: list) -> Dict[str, Optional[datetime]]:
    """next_retry_at of each property's most recent operation."""
    latest: Dict[str, Optional[datetime]] = {}
    if not property_ids:
        return latest
    ops = s.exec(
        select(SyncOperation)
        .where(col(SyncOperation.property_id).in_(property_ids))
        .order_by(col(SyncOperation.started_at).desc())
    ).all()
    for op in ops:
        latest.setdefault(op.property_id, op.next_retry_at)
    return latest


def build_scheduled_trigger(
    engine,
    tracker: Optional[SyncOperationTracker] = None,
    stale_after: timedelta = timedelta(minutes=30),
) -> SyncTrigger:
    """
    Build the trigger for a scheduled run and open its run-level record.

    The returned trigger has no properties when nothing is due (the run is
    recorded as "completed") or when another run started within
    `stale_after` is still processing (the run is recorded as "cancelled").
    A run still processing after that window is assumed killed.
    """
    now = utcnow()
    tracker = tracker or SyncOperationTracker(engine)
    properties = select_properties(engine, now)
    if not properties:
        logger.info(NOTHING_DUE)
        run = tracker.start_run(
            operation_type="scheduled",
            details={"properties_count": 0, "trigger_source": "scheduler"},
            message=NOTHING_DUE,
            status="completed",
        )
        return SyncTrigger(
            trigger_source="scheduled", execution_time=now, sync_operation_id=run.id, properties=[]
        )

    run = tracker.start_run(
        operation_type="scheduled",
        details={"properties_count": len(properties), "trigger_source": "scheduler"},
    )
    # Checked after our own record is committed: of two racing invocations
    # at least one sees the other, so they never both proceed.
    others = tracker.concurrent_runs(run.id, since=now - stale_after)
    if others:
        message = f"Concurrent execution prevented: run {others[0].id} is still processing"
        logger.warning(message)
        tracker.cancel_run(run.id, message)
        return SyncTrigger(
            trigger_source="scheduled", execution_time=now, sync_operation_id=run.id, properties=[]
        )

    return SyncTrigger(
        trigger_source="scheduled",
        execution_time=now,
        sync_operation_id=run.id,
        properties=properties,
    )
