"""Property and channel-integration models."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from pricesync.models.sync import NAIVE_UTC


class Property(SQLModel, table=True):
    """A rental property. Owned by the dashboard; read-only for the sync job."""

    id: str = Field(primary_key=True)
    name: str
    base_price_per_day: Optional[float] = None
    min_price_per_day: Optional[float] = None
    channel_room_type_id: Optional[int] = None


class PropertyIntegration(SQLModel, table=True):
    """
    One channel credential binding per property, with sync health.

    Counters are only ever changed through atomic UPDATE ... SET n = n + 1
    statements issued by SyncOperationTracker.
    """

    integration_id: str = Field(primary_key=True)
    property_id: str = Field(foreign_key="property.id", unique=True, index=True)
    external_property_id: str  # channel (Lodgify) property id
    api_key: Optional[str] = None
    sync_enabled: bool = True
    sync_status: str = "active"  # "active", "paused", "error", "disabled"
    success_count: int = 0
    error_count: int = 0
    last_sync_at: Optional[datetime] = Field(default=None, sa_type=NAIVE_UTC)
