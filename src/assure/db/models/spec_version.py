"""Spec version table: the append-only chain of specification snapshots."""

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from assure.db.base import Base, TimestampMixin


class SpecVersionRow(Base, TimestampMixin):
    __tablename__ = "spec_versions"
    __table_args__ = (
        UniqueConstraint("lineage_id", "version_number", name="uq_spec_versions_lineage_number"),
        Index(
            "uq_spec_versions_one_active",
            "lineage_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    lineage_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    parent_id: Mapped[str | None] = mapped_column(
        String(128), ForeignKey("spec_versions.id"), nullable=True, index=True
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    version_label: Mapped[str] = mapped_column(String(64), nullable=False, default="v1.0.0")
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(30), nullable=False, default="user")
    regulation_trigger: Mapped[str | None] = mapped_column(String(256), nullable=True)
    frameworks: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    jurisdictions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    master_specification: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    security_blueprint: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    cost_analysis: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    tech_stack_justification: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    code_scaffolding: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    def module_payloads(self) -> dict[str, dict | None]:
        """Return the five module payloads keyed by module name."""
        return {
            "master_specification": self.master_specification,
            "security_blueprint": self.security_blueprint,
            "cost_analysis": self.cost_analysis,
            "tech_stack_justification": self.tech_stack_justification,
            "code_scaffolding": self.code_scaffolding,
        }
