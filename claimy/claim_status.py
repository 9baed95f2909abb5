from enum import Enum


class ClaimStatus(Enum):
    """Status of a claim. FAILED and DELETED are terminal"""

    CREATING = "creating"
    ACTIVE = "active"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"


ACTIVE_STATUSES = frozenset({ClaimStatus.CREATING, ClaimStatus.ACTIVE})
TERMINAL_STATUSES = frozenset({ClaimStatus.FAILED, ClaimStatus.DELETED})

TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.CREATING: frozenset({ClaimStatus.ACTIVE, ClaimStatus.FAILED}),
    ClaimStatus.ACTIVE: frozenset({ClaimStatus.DELETING}),
    ClaimStatus.DELETING: frozenset({ClaimStatus.DELETED, ClaimStatus.ACTIVE}),
    ClaimStatus.FAILED: frozenset(),
    ClaimStatus.DELETED: frozenset(),
}


def can_transition(current: ClaimStatus, target: ClaimStatus) -> bool:
    return target in TRANSITIONS[current]
