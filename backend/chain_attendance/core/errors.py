"""API error classes.

Every error carries a machine-readable code, a human-readable message, an
HTTP status and a retry category:

- transient: backing store unavailable, safe to retry
- expired: token or challenge expired, re-fetch / re-request first
- rejected: terminal for this attempt, surfaced verbatim to the user
- not_found: terminal; after a race this is the expected outcome for the loser
"""

from typing import Literal

ErrorCategory = Literal["transient", "expired", "rejected", "not_found"]

# Shown to the loser of a redemption race regardless of the precise cause
ALREADY_USED_MESSAGE = "This code was already used"


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code (e.g., "TOKEN_NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        category: Retry category, or None for request-level errors.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
        category: ErrorCategory | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.category = category
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Authenticated caller lacks the required role (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404).

    Subclasses set a specific code so clients can tell a missing token
    from a missing chain.
    """

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        *,
        code: str = "NOT_FOUND",
        message: str | None = None,
    ) -> None:
        if message is None:
            if resource_id:
                message = f"{resource} with id '{resource_id}' not found"
            else:
                message = f"{resource} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=404,
            category="not_found",
        )


# =============================================================================
# Not found
# =============================================================================


class TokenNotFoundError(NotFoundError):
    """Token does not exist, or was already redeemed (404).

    The message never distinguishes "someone else redeemed it" from "it
    never existed"; both are equivalent for the caller.
    """

    def __init__(self) -> None:
        super().__init__(
            "Token", code="TOKEN_NOT_FOUND", message=ALREADY_USED_MESSAGE
        )


class ChainNotFoundError(NotFoundError):
    """Chain does not exist (404)."""

    def __init__(self, chain_id: str | None = None) -> None:
        super().__init__("Chain", chain_id, code="CHAIN_NOT_FOUND")


class SessionNotFoundError(NotFoundError):
    """Attendance session does not exist (404)."""

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__("Session", session_id, code="SESSION_NOT_FOUND")


class SnapshotNotFoundError(NotFoundError):
    """Snapshot does not exist (404)."""

    def __init__(self, snapshot_id: str | None = None) -> None:
        super().__init__("Snapshot", snapshot_id, code="SNAPSHOT_NOT_FOUND")


# =============================================================================
# Expired
# =============================================================================


class TokenExpiredError(APIError):
    """Token is past its expiry (410). The holder must fetch a fresh one."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_EXPIRED",
            message="This code has expired. Ask the holder to refresh it.",
            status_code=410,
            category="expired",
        )


class ChallengeExpiredError(APIError):
    """No live challenge exists for this scanner (410).

    Raised when the challenge expired, was never requested, or was already
    spent by an earlier validation attempt.
    """

    def __init__(self) -> None:
        super().__init__(
            code="CHALLENGE_EXPIRED",
            message="The confirmation code has expired. Request a new one.",
            status_code=410,
            category="expired",
        )


# =============================================================================
# Rejected
# =============================================================================


class SelfScanError(APIError):
    """Holder attempted to redeem their own token (422)."""

    def __init__(self) -> None:
        super().__init__(
            code="SELF_SCAN",
            message="You cannot scan your own code",
            status_code=422,
            category="rejected",
        )


class ChallengeMismatchError(APIError):
    """Supplied confirmation code does not match (422)."""

    def __init__(self) -> None:
        super().__init__(
            code="CHALLENGE_MISMATCH",
            message="The confirmation code is incorrect",
            status_code=422,
            category="rejected",
        )


class GeofenceViolationError(APIError):
    """Scanner is outside the enforced geofence (403).

    Args:
        warning: Human-readable distance explanation.
        distance_m: Computed distance in meters, if a location was supplied.
    """

    def __init__(self, warning: str, distance_m: float | None = None) -> None:
        details = None
        if distance_m is not None:
            details = [{"distance_m": round(distance_m, 1)}]
        super().__init__(
            code="GEOFENCE_VIOLATION",
            message=f"Out of bounds: {warning}",
            status_code=403,
            details=details,
            category="rejected",
        )


class HolderMismatchError(APIError):
    """Token is no longer held by the expected holder (409)."""

    def __init__(self) -> None:
        super().__init__(
            code="HOLDER_MISMATCH",
            message=ALREADY_USED_MESSAGE,
            status_code=409,
            category="rejected",
        )


class ChainClosedError(APIError):
    """Chain was completed before the hand-off could land (409)."""

    def __init__(self, chain_id: str) -> None:
        super().__init__(
            code="CHAIN_CLOSED",
            message=f"Chain '{chain_id}' is closed",
            status_code=409,
            category="not_found",
        )


class InsufficientParticipantsError(APIError):
    """No eligible participant is available to seed a chain (409)."""

    def __init__(self, requested: int, available: int = 0) -> None:
        super().__init__(
            code="INSUFFICIENT_PARTICIPANTS",
            message="No eligible participants are available",
            status_code=409,
            details=[{"requested": requested, "available": available}],
            category="rejected",
        )


class InvalidStateError(APIError):
    """Business rule violation (422)."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_STATE_TRANSITION",
            message=message,
            status_code=422,
            category="rejected",
        )


# =============================================================================
# Transient
# =============================================================================


class StoreUnavailableError(APIError):
    """Backing store timed out or is unreachable (503). Safe to retry."""

    def __init__(self) -> None:
        super().__init__(
            code="STORE_UNAVAILABLE",
            message="The attendance store is temporarily unavailable",
            status_code=503,
            category="transient",
        )
