"""Pydantic models for events published on the bus and to webhooks."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from assure.models.common import CamelModel
from assure.models.enums import ModuleKey
from assure.models.spec import ClauseDiff


class SpecUpdatedEvent(CamelModel):
    event_id: str
    event_type: str = "spec.updated"
    workspace_id: str
    spec_version_id: str
    new_version_id: str
    regulation_trigger: str
    affected_modules: list[ModuleKey]
    diffs: list[ClauseDiff]
    pr_requested: bool = True


class PrRequestedEvent(CamelModel):
    event_id: str
    workspace_id: str
    spec_version_id: str
    previous_version_id: str
    regulation_trigger: str
    affected_modules: list[ModuleKey]
    diffs: list[ClauseDiff]
    version_label: str
    impact_log_id: str | None = None


class PrCreatedEvent(CamelModel):
    event_id: str
    workspace_id: str
    spec_version_id: str
    regulation_trigger: str
    delivery_status: int | None = None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field("1.0", pattern=r"^\d+\.\d+(\.\d+)?$")
    event_type: str
    event_id: str
    occurred_at: datetime
    source_system: str
    signature: str | None = None
    payload: dict[str, Any]
