"""Clause diff audit table."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from assure.db.base import Base


class SpecDiffRow(Base):
    __tablename__ = "spec_diffs"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    from_version_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("spec_versions.id"), nullable=False, index=True
    )
    to_version_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("spec_versions.id"), nullable=False, index=True
    )
    module: Mapped[str] = mapped_column(String(50), nullable=False)
    clause_path: Mapped[str] = mapped_column(String(512), nullable=False)
    field_label: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    before_value: Mapped[str] = mapped_column(Text, nullable=False)
    after_value: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    regulation_trigger: Mapped[str | None] = mapped_column(String(256), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
