"""Shared dependencies for API endpoints.

Callers authenticate with a bearer JWT from the external identity
provider. The token is decoded once here into a Principal; routes depend
on the role-checking aliases below rather than on raw headers.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from chain_attendance.core.auth import Principal, Role, decode_identity_token
from chain_attendance.core.database import get_db
from chain_attendance.core.errors import ForbiddenError, UnauthorizedError

_BEARER_PREFIX = "bearer "


def get_current_principal(request: Request) -> Principal:
    """Resolve the caller from the Authorization header.

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        Principal for the authenticated caller.

    Raises:
        UnauthorizedError: Header missing, malformed or token invalid.
    """
    header = request.headers.get("authorization", "")
    if not header.lower().startswith(_BEARER_PREFIX):
        raise UnauthorizedError()
    token = header[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise UnauthorizedError()
    return decode_identity_token(token)


def require_organizer(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Allow only organizers."""
    if principal.role != Role.ORGANIZER:
        raise ForbiddenError("Organizer role required")
    return principal


def require_participant(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """Allow only participants."""
    if principal.role != Role.PARTICIPANT:
        raise ForbiddenError("Participant role required")
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
Organizer = Annotated[Principal, Depends(require_organizer)]
Participant = Annotated[Principal, Depends(require_participant)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
