from enum import Enum


class FailureCode(Enum):
    """Classification recorded on a claim which failed"""

    NO_ALLOC = "NO_ALLOC"
    EGG_INVALID = "EGG_INVALID"
    API_DOWN = "API_DOWN"
    HEALTHCHECK_TIMEOUT = "HEALTHCHECK_TIMEOUT"
    BOT_TIMEOUT = "BOT_TIMEOUT"
    NODE_FULL = "NODE_FULL"
    USER_EXISTS = "USER_EXISTS"
    UNKNOWN = "UNKNOWN"


# Operator facing reasons stored on failed claims. Raw exception text stays in the logs.
FAILURE_REASONS: dict[FailureCode, str] = {
    FailureCode.NO_ALLOC: "All hosting nodes are full or unavailable. Please try again later.",
    FailureCode.EGG_INVALID: "The selected server template is not available.",
    FailureCode.API_DOWN: "The hosting panel could not be reached. Please try again later.",
    FailureCode.HEALTHCHECK_TIMEOUT: "The server did not become reachable in time.",
    FailureCode.BOT_TIMEOUT: "The messaging service could not be reached.",
    FailureCode.NODE_FULL: "The hosting node has no free capacity.",
    FailureCode.USER_EXISTS: "A panel account with these details already exists.",
    FailureCode.UNKNOWN: "Server creation failed. Please try again.",
}


def get_failure_reason(code: FailureCode) -> str:
    return FAILURE_REASONS.get(code, FAILURE_REASONS[FailureCode.UNKNOWN])
