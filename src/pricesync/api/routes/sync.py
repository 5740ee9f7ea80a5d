"""Sync trigger and status routes."""
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlmodel import Session, col, select

from pricesync.config import get_settings
from pricesync.db.engine import get_engine, get_session
from pricesync.errors import InvocationError
from pricesync.models.sync import SyncOperation
from pricesync.sync.dispatcher import BatchDispatcher, build_dispatcher
from pricesync.sync.schemas import RunSummary, SyncTrigger
from pricesync.sync.trigger import build_scheduled_trigger

router = APIRouter()


class SyncStatusResponse(BaseModel):
    status: str
    run_id: Optional[str]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    summary: Optional[Dict[str, Any]]


async def get_dispatcher() -> AsyncGenerator[BatchDispatcher, None]:
    """Dispatcher with one HTTP client shared by every call in the run."""
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        yield build_dispatcher(get_engine(), http, settings)


async def _parse_trigger(request: Request) -> SyncTrigger:
    try:
        return SyncTrigger.model_validate(await request.json())
    except ValueError as exc:
        raise InvocationError(f"Malformed trigger payload: {exc}") from exc


@router.post("/run", response_model=RunSummary)
async def run_sync(request: Request, dispatcher: BatchDispatcher = Depends(get_dispatcher)):
    """
    Run one synchronization for the properties in the trigger payload.

    Returns 200 with the run summary even when some properties failed; the
    `errors` list is where partial failures surface.
    """
    trigger = await _parse_trigger(request)
    return await dispatcher.run_trigger(trigger)


@router.post("/scheduled", response_model=RunSummary)
async def run_scheduled_sync(dispatcher: BatchDispatcher = Depends(get_dispatcher)):
    """
    Select every integration due for sync from the store and run it.

    Returns an empty summary when nothing is due or another run is still in
    progress; `GET /sync/status` tells the two apart.
    """
    trigger = build_scheduled_trigger(
        dispatcher.engine, dispatcher.tracker, dispatcher.stale_after
    )
    if not trigger.properties:
        return RunSummary(execution_id=trigger.sync_operation_id, total_properties=0)
    return await dispatcher.run_trigger(trigger)


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(session: Session = Depends(get_session)):
    """Return the status of the most recent run-level record."""
    run = session.exec(
        select(SyncOperation)
        .where(col(SyncOperation.property_id).is_(None))
        .order_by(col(SyncOperation.started_at).desc())
    ).first()
    if not run:
        return SyncStatusResponse(
            status="never_run",
            run_id=None,
            started_at=None,
            completed_at=None,
            summary=None,
        )
    return SyncStatusResponse(
        status=run.status,
        run_id=run.id,
        started_at=run.started_at,
        completed_at=run.completed_at,
        summary=run.error_details,
    )


@router.get("/operations", response_model=List[SyncOperation])
def list_operations(
    property_id: Optional[str] = None,
    limit: int = 20,
    session: Session = Depends(get_session),
):
    """Per-property sync history, newest first."""
    query = select(SyncOperation).where(col(SyncOperation.property_id).is_not(None))
    if property_id:
        query = query.where(col(SyncOperation.property_id) == property_id)
    return session.exec(
        query.order_by(col(SyncOperation.started_at).desc()).limit(limit)
    ).all()
