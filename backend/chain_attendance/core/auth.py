"""Identity resolution for bearer tokens issued by the external identity provider.

The raw token is decoded exactly once, at the request boundary, into a
typed Principal. Nothing past this module inspects identity strings or
claims.
"""

import enum
import logging
from dataclasses import dataclass

import jwt

from chain_attendance.core.config import settings
from chain_attendance.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)

# Longest participant id we accept (matches the String column width)
_MAX_PARTICIPANT_ID_LENGTH = 255


class Role(enum.StrEnum):
    """Caller role resolved from the identity provider's ``role`` claim."""

    PARTICIPANT = "participant"
    ORGANIZER = "organizer"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller.

    Attributes:
        participant_id: Stable identifier from the ``sub`` claim.
        role: Resolved role.
    """

    participant_id: str
    role: Role


def decode_identity_token(token: str) -> Principal:
    """Verify a bearer JWT and resolve it into a Principal.

    Validation steps:
    1. Verify HS256 signature with AUTH_SECRET
    2. Verify exp, aud, iss claims
    3. Require a non-empty ``sub`` of bounded length
    4. Map the ``role`` claim onto Role (unknown roles are rejected)

    Args:
        token: Encoded JWT from the Authorization header.

    Returns:
        Principal for the caller.

    Raises:
        UnauthorizedError: For any verification failure. The reason is
            logged but never returned to the client.
    """
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        participant_id = str(payload["sub"])
        role = Role(payload.get("role", Role.PARTICIPANT.value))
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        logger.info("Rejected identity token: %s", type(exc).__name__)
        raise UnauthorizedError() from exc

    if not participant_id or len(participant_id) > _MAX_PARTICIPANT_ID_LENGTH:
        raise UnauthorizedError()

    return Principal(participant_id=participant_id, role=role)
