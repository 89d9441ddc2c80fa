"""Regulation impact log repository."""

from sqlalchemy import select

from assure.db.models.impact_log import RegulationImpactLogRow
from assure.repositories.base import BaseRepository


class ImpactLogRepository(BaseRepository[RegulationImpactLogRow]):
    model_class = RegulationImpactLogRow

    async def list_entries(
        self,
        regulation_ref: str | None = None,
        workspace_id: str | None = None,
        limit: int = 100,
    ) -> list[RegulationImpactLogRow]:
        conditions = []
        if regulation_ref:
            conditions.append(RegulationImpactLogRow.regulation_ref == regulation_ref)
        if workspace_id:
            conditions.append(RegulationImpactLogRow.workspace_id == workspace_id)
        stmt = (
            select(RegulationImpactLogRow)
            .where(*conditions)
            .order_by(RegulationImpactLogRow.created_at.desc())
            .limit(limit)
        )
        return await self._all(stmt)
