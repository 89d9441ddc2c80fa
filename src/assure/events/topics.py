"""Event bus topic registry."""

REGULATION_NEW = "regulation.new"
REGULATION_UPDATED = "regulation.updated"
SPEC_UPDATED = "spec.updated"
SPEC_PR_REQUESTED = "spec.pr_requested"
SPEC_PR_CREATED = "spec.pr_created"

ALL_TOPICS = (
    REGULATION_NEW,
    REGULATION_UPDATED,
    SPEC_UPDATED,
    SPEC_PR_REQUESTED,
    SPEC_PR_CREATED,
)


def dead_letter_topic(topic: str) -> str:
    return f"{topic}.dead"
