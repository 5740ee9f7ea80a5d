"""Trigger and run-summary wire schemas."""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class TriggerProperty(BaseModel):
    """One property to synchronize; `lodgify_property_id`/`name` are accepted aliases."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    property_id: str
    external_property_id: str = Field(
        validation_alias=AliasChoices("external_property_id", "lodgify_property_id")
    )
    display_name: str = Field(default="", validation_alias=AliasChoices("display_name", "name"))
    integration_id: str


class SyncTrigger(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    trigger_source: Literal["scheduled", "manual"] = "scheduled"
    execution_time: datetime
    sync_operation_id: Optional[str] = None
    properties: List[TriggerProperty] = []


class SyncErrorSummary(BaseModel):
    property_id: str
    error_code: str
    error_message: str
    retry_scheduled: bool = False


class RunSummary(BaseModel):
    execution_id: str
    total_properties: int
    successful_syncs: int = 0
    failed_syncs: int = 0
    execution_time_ms: int = 0
    errors: List[SyncErrorSummary] = []
