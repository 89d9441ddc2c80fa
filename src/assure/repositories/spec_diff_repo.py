"""Clause diff audit repository."""

from sqlalchemy import select

from assure.db.models.spec_diff import SpecDiffRow
from assure.models.spec import ClauseDiff
from assure.repositories.base import BaseRepository
from assure.services.id_generator import generate_id


class SpecDiffRepository(BaseRepository[SpecDiffRow]):
    model_class = SpecDiffRow

    async def add_many(
        self, from_version_id: str, to_version_id: str, diffs: list[ClauseDiff]
    ) -> list[SpecDiffRow]:
        """One audit row per applied diff, inside the caller's version transaction."""
        rows = [
            SpecDiffRow(
                id=generate_id("diff_"),
                from_version_id=from_version_id,
                to_version_id=to_version_id,
                module=d.module.value,
                clause_path=d.clause_path,
                field_label=d.field_label,
                before_value=d.before,
                after_value=d.after,
                reason=d.reason,
                regulation_trigger=d.regulation_trigger,
                severity=d.severity.value,
            )
            for d in diffs
        ]
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def list_for_version(self, to_version_id: str) -> list[SpecDiffRow]:
        stmt = (
            select(SpecDiffRow)
            .where(SpecDiffRow.to_version_id == to_version_id)
            .order_by(SpecDiffRow.module, SpecDiffRow.clause_path)
        )
        return await self._all(stmt)

    @staticmethod
    def to_clause_diff(row: SpecDiffRow) -> ClauseDiff:
        return ClauseDiff(
            module=row.module,
            clause_path=row.clause_path,
            field_label=row.field_label,
            before=row.before_value,
            after=row.after_value,
            reason=row.reason,
            regulation_trigger=row.regulation_trigger,
            severity=row.severity,
        )
