from claimy.failure_code import FailureCode


class ClaimyError(Exception):
    """Base error. Errors raised while processing a claim carry the code recorded on it."""

    code: FailureCode = FailureCode.UNKNOWN


class ValidationError(ClaimyError):
    """Malformed input, rejected before any state is mutated"""


class NotAMember(ClaimyError):
    """The claimant is not a member of the target group"""


class MembershipUnavailable(ClaimyError):
    """The membership backend timed out or could not be reached"""

    code = FailureCode.BOT_TIMEOUT


class BotTimeout(MembershipUnavailable):
    """The messaging collaborator could not be reached while processing a claim"""


class ConflictError(ClaimyError):
    """A write would break a store invariant (one active claim per JID, or a stale status)"""


class DuplicateActiveClaim(ConflictError):
    """The JID already has a claim which is creating or active"""


class InvalidTransition(ClaimyError):
    """An attempt was made to move a claim along an edge the state machine does not have"""


class NoAllocationAvailable(ClaimyError):
    """Every hosting node was tried and none could host the server"""

    code = FailureCode.NO_ALLOC


class EggInvalid(ClaimyError):
    """The requested template is not known"""

    code = FailureCode.EGG_INVALID


class HostingApiError(ClaimyError):
    """Transport or server side failure from the hosting control plane"""

    code = FailureCode.API_DOWN

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HostingNotFound(HostingApiError):
    """The hosting control plane reported that a resource does not exist"""


class HostingRequestRejected(HostingApiError):
    """The hosting control plane rejected a request as invalid (HTTP 422)"""

    code = FailureCode.UNKNOWN


class AccountConflict(HostingRequestRejected):
    """The panel refused to create an account, usually a username or email clash"""

    code = FailureCode.USER_EXISTS


class InvalidClaimToken(ClaimyError):
    """A status query carried a missing or wrong client token"""


class HealthcheckTimeout(ClaimyError):
    """Installation or reachability never succeeded within budget"""

    code = FailureCode.HEALTHCHECK_TIMEOUT


def classify(error: BaseException) -> FailureCode:
    """Get the failure code for an error raised while processing a claim"""
    if isinstance(error, ClaimyError):
        return error.code
    return FailureCode.UNKNOWN
