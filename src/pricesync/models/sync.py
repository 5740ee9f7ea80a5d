"""Sync operation audit model."""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column is declared naive (NAIVE_UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Naive storage: SQLite returns naive values, so stored and computed times
# must both be naive to compare.
NAIVE_UTC = DateTime(timezone=False)


def new_operation_id() -> str:
    return str(uuid.uuid4())


class SyncOperation(SQLModel, table=True):
    """
    One row per property per run, plus one run-level row (property_id=None)
    when the trigger created one. Rows are append-only history: a retry in a
    later invocation gets a new row.
    """

    id: str = Field(default_factory=new_operation_id, primary_key=True)
    property_id: Optional[str] = Field(default=None, index=True)
    parent_run_id: Optional[str] = Field(default=None, index=True)
    operation_type: str = "scheduled"  # "scheduled", "manual"
    status: str = "pending"  # "pending", "processing", "completed", "failed", "cancelled"
    started_at: datetime = Field(default_factory=utcnow, sa_type=NAIVE_UTC)
    completed_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_UTC)
    duration_ms: Optional[int] = None
    retry_count: int = 0
    next_retry_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_UTC)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
