"""Pydantic request/response schemas for API endpoints."""

from chain_attendance.schemas.chain import (
    ChainCloseResponse,
    ChainHistoryResponse,
    ChainResponse,
    SeedChainsRequest,
    SeededChainResponse,
    TransferHistoryEntry,
)
from chain_attendance.schemas.session import (
    HeartbeatRequest,
    PresenceResponse,
    SessionCreate,
    SessionResponse,
)
from chain_attendance.schemas.snapshot import (
    SnapshotCaptureResponse,
    SnapshotComparisonResponse,
    SnapshotResponse,
    TakeSnapshotRequest,
)
from chain_attendance.schemas.token import (
    ChallengeResponse,
    LocationPayload,
    MyTokenResponse,
    ScanRequest,
    ScanResponse,
)

__all__ = [
    # Chains
    "ChainCloseResponse",
    "ChainHistoryResponse",
    "ChainResponse",
    "SeedChainsRequest",
    "SeededChainResponse",
    "TransferHistoryEntry",
    # Sessions
    "HeartbeatRequest",
    "PresenceResponse",
    "SessionCreate",
    "SessionResponse",
    # Snapshots
    "SnapshotCaptureResponse",
    "SnapshotComparisonResponse",
    "SnapshotResponse",
    "TakeSnapshotRequest",
    # Tokens and scans
    "ChallengeResponse",
    "LocationPayload",
    "MyTokenResponse",
    "ScanRequest",
    "ScanResponse",
]
