"""Shared utilities and protocol definitions."""
from geovault.shared.protocol import (
    SENTINEL_DISTANCE,
    UNRESOLVED_POINT_ID,
    DecryptedResult,
    EncryptedPoint,
    PendingRequest,
    QueryKind,
    QueryResult,
    RevealedMatch,
    RevealState,
)
from geovault.shared.errors import (
    AlreadyRevealedError,
    ConfigurationError,
    DeliveryError,
    GeoVaultError,
    InvalidCiphertextError,
    InvalidRequestError,
    LengthMismatchError,
    NotFoundError,
    ProofVerificationError,
    QueryIncompleteError,
)
from geovault.shared.utils import (
    compute_query_hash,
    generate_random_points,
    planar_distance,
    plaintext_nearest,
    plaintext_range_matches,
    Timer,
)

__all__ = [
    "SENTINEL_DISTANCE",
    "UNRESOLVED_POINT_ID",
    "DecryptedResult",
    "EncryptedPoint",
    "PendingRequest",
    "QueryKind",
    "QueryResult",
    "RevealedMatch",
    "RevealState",
    "AlreadyRevealedError",
    "ConfigurationError",
    "DeliveryError",
    "GeoVaultError",
    "InvalidCiphertextError",
    "InvalidRequestError",
    "LengthMismatchError",
    "NotFoundError",
    "ProofVerificationError",
    "QueryIncompleteError",
    "compute_query_hash",
    "generate_random_points",
    "planar_distance",
    "plaintext_nearest",
    "plaintext_range_matches",
    "Timer",
]
