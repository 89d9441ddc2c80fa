"""Regulation ingress and impact log queries."""

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from assure.api.dependencies import Bus, TraceId, get_db
from assure.errors.exceptions import ValidationError
from assure.events import topics
from assure.models.regulation import RegulationEvent
from assure.repositories.impact_log_repo import ImpactLogRepository

router = APIRouter(tags=["Regulations"])


@router.post("/regulations/events", status_code=202)
async def ingest_regulation_event(body: dict, bus: Bus, trace_id: TraceId) -> dict:
    """Publish a regulation arrival for asynchronous impact analysis."""
    try:
        event = RegulationEvent.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid regulation event", details=exc.errors(include_url=False, include_context=False)
        ) from exc

    topic = topics.REGULATION_UPDATED if event.event_type == topics.REGULATION_UPDATED else topics.REGULATION_NEW
    payload = event.model_dump(mode="json", by_alias=True)
    payload["eventId"] = event.event_id or trace_id
    message_id = await bus.publish(topic, payload, key=event.regulation.ref)
    return {"topic": topic, "messageId": message_id, "regulationRef": event.regulation.ref}


@router.get("/regulations/impact")
async def list_impact(
    regulation_ref: str | None = Query(None),
    workspace_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[dict]:
    rows = await ImpactLogRepository(db).list_entries(regulation_ref, workspace_id, limit)
    return [
        {
            "id": r.id,
            "regulationId": r.regulation_id,
            "regulationRef": r.regulation_ref,
            "workspaceId": r.workspace_id,
            "specVersionId": r.spec_version_id,
            "newSpecVersionId": r.new_spec_version_id,
            "affectedModules": r.affected_modules,
            "diffCount": r.diff_count,
            "status": r.status,
            "semanticScore": r.semantic_score,
            "errorMessage": r.error_message,
            "createdAt": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
