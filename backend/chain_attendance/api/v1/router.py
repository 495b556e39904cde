"""API v1 router aggregator.

All v1 endpoint routers are included here under the /api/v1 prefix.
"""

from fastapi import APIRouter

from chain_attendance.api.v1 import chains, events, sessions, snapshots, tokens

router = APIRouter()

# =============================================================================
# Sessions (and routes nested under a session)
# =============================================================================

_SESSIONS_PREFIX = "/sessions"

router.include_router(sessions.router, prefix=_SESSIONS_PREFIX, tags=["sessions"])
router.include_router(
    chains.session_chains_router, prefix=_SESSIONS_PREFIX, tags=["chains"]
)
router.include_router(
    snapshots.session_snapshots_router, prefix=_SESSIONS_PREFIX, tags=["snapshots"]
)
router.include_router(events.router, prefix=_SESSIONS_PREFIX, tags=["events"])

# =============================================================================
# Chain Token Protocol
# =============================================================================

router.include_router(chains.router, prefix="/chains", tags=["chains"])
router.include_router(tokens.router, prefix="/tokens", tags=["tokens"])

# =============================================================================
# Snapshots
# =============================================================================

router.include_router(snapshots.router, prefix="/snapshots", tags=["snapshots"])
