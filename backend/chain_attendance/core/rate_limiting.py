"""Rate limiting configuration using slowapi.

Security: Caps how fast a single caller can hit the scan and challenge
endpoints, which bounds brute-force guessing of confirmation codes.

Requests carrying a verifiable bearer token are keyed on the token
subject (per participant); everything else falls back to IP-based keying.

Usage in routers:
    from chain_attendance.core.rate_limiting import limiter

    @router.post("/{token_id}/scan")
    @limiter.limit(lambda: settings.rate_limit_scan)
    async def submit_scan(request: Request, ...):
        ...
"""

import jwt
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from chain_attendance.core.config import settings

_BEARER_PREFIX = "bearer "


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Valid bearer token: "participant:{sub}"
    - Missing/invalid token: "unauth:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    # Note: Full auth validation happens in deps.py; only the sub claim is
    # needed here for keying.
    header = request.headers.get("authorization", "")
    if header.lower().startswith(_BEARER_PREFIX):
        try:
            payload = jwt.decode(
                header[len(_BEARER_PREFIX) :],
                settings.auth_secret.get_secret_value(),
                algorithms=["HS256"],
                audience=settings.auth_audience,
                issuer=settings.auth_issuer,
            )
            sub = str(payload["sub"])
            if 0 < len(sub) <= 255:
                return f"participant:{sub}"
        except (jwt.InvalidTokenError, KeyError):
            pass

    return f"unauth:{get_remote_address(request)}"


# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "30 per 1 minute")
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
                "category": "transient",
                "details": None,
            }
        },
        headers={"Retry-After": retry_after},
    )
