"""Version Store: the append-only chain of spec versions.

Existing rows are never edited except for their status, and a status moves
from ``active`` to ``superseded`` only inside ``create_child_version``.
"""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value

from assure.db.models.spec_version import SpecVersionRow
from assure.errors.exceptions import ConflictError, VersionConflictError
from assure.models.enums import ModuleKey, SpecStatus, TriggeredBy
from assure.repositories.base import BaseRepository
from assure.services.id_generator import generate_id

MODULE_COLUMNS = [m.value for m in ModuleKey]


class SpecVersionRepository(BaseRepository[SpecVersionRow]):
    model_class = SpecVersionRow

    async def get_active_for_lineage(self, lineage_id: str) -> SpecVersionRow | None:
        stmt = select(SpecVersionRow).where(
            SpecVersionRow.lineage_id == lineage_id,
            SpecVersionRow.status == SpecStatus.ACTIVE.value,
        )
        return await self._first(stmt)

    async def list_lineage(self, lineage_id: str) -> list[SpecVersionRow]:
        stmt = (
            select(SpecVersionRow)
            .where(SpecVersionRow.lineage_id == lineage_id)
            .order_by(SpecVersionRow.version_number.asc())
        )
        return await self._all(stmt)

    async def list_active_candidates(self) -> list[SpecVersionRow]:
        """All active versions; input to the structural impact filter."""
        stmt = select(SpecVersionRow).where(SpecVersionRow.status == SpecStatus.ACTIVE.value)
        return await self._all(stmt)

    async def create_initial_version(
        self,
        workspace_id: str,
        modules: dict[str, dict | None],
        frameworks: list[str],
        jurisdictions: list[str],
        version_label: str = "v1.0.0",
        status: SpecStatus = SpecStatus.ACTIVE,
        change_reason: str | None = None,
        triggered_by: TriggeredBy = TriggeredBy.USER,
        created_by: str | None = None,
    ) -> SpecVersionRow:
        """Insert version 1 of a new lineage."""
        spec_id = generate_id()
        return await self.create(
            id=spec_id,
            workspace_id=workspace_id,
            lineage_id=spec_id,
            parent_id=None,
            version_number=1,
            version_label=version_label,
            status=status.value,
            change_reason=change_reason,
            triggered_by=triggered_by.value,
            regulation_trigger=None,
            frameworks=list(frameworks),
            jurisdictions=list(jurisdictions),
            created_by=created_by,
            **{col: modules.get(col) for col in MODULE_COLUMNS},
        )

    async def create_child_version(
        self,
        parent: SpecVersionRow,
        modules: dict[str, dict | None],
        version_label: str,
        change_reason: str,
        triggered_by: TriggeredBy,
        regulation_trigger: str | None = None,
        created_by: str | None = None,
    ) -> SpecVersionRow:
        """Insert ``parent``'s child as the active version and supersede ``parent``.

        Runs inside the caller's transaction. The conditional UPDATE is the
        serialization point between concurrent patch jobs: if ``parent`` is no
        longer active, nothing is inserted and VersionConflictError is raised.
        The caller commits (or rolls back) the unit of work.
        """
        now = datetime.now(timezone.utc)
        stmt = (
            update(SpecVersionRow)
            .where(
                SpecVersionRow.id == parent.id,
                SpecVersionRow.status == SpecStatus.ACTIVE.value,
            )
            .values(status=SpecStatus.SUPERSEDED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise VersionConflictError(parent.id, parent.lineage_id)
        if parent in self.session:
            set_committed_value(parent, "status", SpecStatus.SUPERSEDED.value)

        child = SpecVersionRow(
            id=generate_id(),
            workspace_id=parent.workspace_id,
            lineage_id=parent.lineage_id,
            parent_id=parent.id,
            version_number=parent.version_number + 1,
            version_label=version_label,
            status=SpecStatus.ACTIVE.value,
            change_reason=change_reason,
            triggered_by=triggered_by.value,
            regulation_trigger=regulation_trigger,
            frameworks=list(parent.frameworks or []),
            jurisdictions=list(parent.jurisdictions or []),
            created_by=created_by,
            **{col: modules.get(col) for col in MODULE_COLUMNS},
        )
        self.session.add(child)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Another writer already claimed version_number + 1 in this lineage
            raise VersionConflictError(parent.id, parent.lineage_id) from exc
        return child

    async def archive(self, row: SpecVersionRow) -> SpecVersionRow:
        """Mark a version archived. Versions are never deleted."""
        if row.status == SpecStatus.ARCHIVED.value:
            return row
        if row.status == SpecStatus.SUPERSEDED.value:
            raise ConflictError(f"Spec version '{row.id}' is superseded; archive the active head instead")
        return await self.update(row, status=SpecStatus.ARCHIVED.value)
