"""Regulation impact log: one row per (regulation, spec) evaluation."""

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assure.db.base import Base, TimestampMixin


class RegulationImpactLogRow(Base, TimestampMixin):
    __tablename__ = "regulation_impact_log"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    regulation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    regulation_ref: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    spec_version_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("spec_versions.id"), nullable=False, index=True
    )
    new_spec_version_id: Mapped[str | None] = mapped_column(
        String(128), ForeignKey("spec_versions.id"), nullable=True
    )
    affected_modules: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    diff_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    semantic_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
