"""Spec version endpoints: registration of version 1 and read-only history."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from assure.api.dependencies import get_db
from assure.errors.exceptions import NotFoundError
from assure.models.spec import CreateSpecRequest, SpecVersionModel
from assure.repositories.spec_diff_repo import SpecDiffRepository
from assure.repositories.spec_version_repo import SpecVersionRepository

router = APIRouter(tags=["Specs"])


async def _get_or_404(repo: SpecVersionRepository, spec_id: str):
    row = await repo.get(spec_id)
    if not row:
        raise NotFoundError("SpecVersion", spec_id)
    return row


@router.post("/specs", status_code=201)
async def create_spec(body: CreateSpecRequest, db: AsyncSession = Depends(get_db)) -> dict:
    repo = SpecVersionRepository(db)
    row = await repo.create_initial_version(
        workspace_id=body.workspace_id,
        modules=body.modules.model_dump(),
        frameworks=body.frameworks,
        jurisdictions=body.jurisdictions,
        version_label=body.version_label,
        status=body.status,
        change_reason=body.change_reason,
        triggered_by=body.triggered_by,
        created_by=body.created_by,
    )
    await db.commit()
    return SpecVersionModel.from_row(row).model_dump(mode="json", by_alias=True)


@router.get("/specs/{spec_id}")
async def get_spec(spec_id: str, db: AsyncSession = Depends(get_db)) -> dict:
    row = await _get_or_404(SpecVersionRepository(db), spec_id)
    return SpecVersionModel.from_row(row).model_dump(mode="json", by_alias=True)


@router.get("/specs/{spec_id}/lineage")
async def get_lineage(spec_id: str, db: AsyncSession = Depends(get_db)) -> list[dict]:
    """Every version of the spec's lineage, oldest first, without module payloads."""
    repo = SpecVersionRepository(db)
    row = await _get_or_404(repo, spec_id)
    return [
        SpecVersionModel.from_row(v).model_dump(mode="json", by_alias=True, exclude={"modules"})
        for v in await repo.list_lineage(row.lineage_id)
    ]


@router.get("/specs/{spec_id}/diffs")
async def get_diffs(spec_id: str, db: AsyncSession = Depends(get_db)) -> list[dict]:
    """Clause diffs that produced this version from its parent."""
    await _get_or_404(SpecVersionRepository(db), spec_id)
    rows = await SpecDiffRepository(db).list_for_version(spec_id)
    return [SpecDiffRepository.to_clause_diff(r).model_dump(mode="json", by_alias=True) for r in rows]


@router.post("/specs/{spec_id}/archive")
async def archive_spec(spec_id: str, db: AsyncSession = Depends(get_db)) -> dict:
    repo = SpecVersionRepository(db)
    row = await _get_or_404(repo, spec_id)
    row = await repo.archive(row)
    await db.commit()
    return SpecVersionModel.from_row(row).model_dump(mode="json", by_alias=True, exclude={"modules"})
