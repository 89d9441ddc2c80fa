"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from assure.db.models.spec_version import SpecVersionRow
from assure.db.models.spec_diff import SpecDiffRow
from assure.db.models.impact_log import RegulationImpactLogRow
from assure.db.models.job import JobRow

__all__ = [
    "SpecVersionRow",
    "SpecDiffRow",
    "RegulationImpactLogRow",
    "JobRow",
]
