"""
Protocol definitions for the encrypted point and query lifecycle.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from geovault.fhe.base import Ciphertext


# Distance written for candidates that fail a range predicate
SENTINEL_DISTANCE = -1.0

# Point ids start at 1; 0 marks "no point"
UNRESOLVED_POINT_ID = 0


class QueryKind(Enum):
    """Supported encrypted queries."""
    RANGE = "range"
    NEAREST = "nearest"


class RevealState(Enum):
    """Per-query reveal handshake state."""
    NO_REQUEST = "no_request"
    REQUESTED = "requested"
    REVEALED = "revealed"  # terminal


@dataclass(frozen=True)
class EncryptedPoint:
    """
    A submitted spatiotemporal point.

    ``submitted_at`` is plaintext wall-clock time for audit only; queries
    always use ``enc_timestamp``.
    """
    id: int
    enc_lat: Ciphertext
    enc_lon: Ciphertext
    enc_timestamp: Ciphertext
    submitted_at: float
    owner: Optional[str] = None


@dataclass
class QueryResult:
    """
    Encrypted result of a query.

    ``point_ids`` and ``encrypted_distances`` are parallel. Nearest-neighbor
    results carry the encrypted winner in ``encrypted_point_ids`` and hold
    UNRESOLVED_POINT_ID in ``point_ids`` until revealed.
    """
    query_hash: str
    kind: QueryKind
    point_ids: List[int] = field(default_factory=list)
    encrypted_distances: List[Ciphertext] = field(default_factory=list)
    encrypted_point_ids: List[Ciphertext] = field(default_factory=list)
    complete: bool = False

    def reveal_batch(self) -> List[Ciphertext]:
        """Ordered ciphertexts sent to the oracle: encrypted ids, then distances."""
        return list(self.encrypted_point_ids) + list(self.encrypted_distances)


@dataclass
class DecryptedResult:
    """
    Plaintext counterpart of a QueryResult.

    ``revealed`` only ever goes False -> True.
    """
    query_hash: str
    point_ids: List[int] = field(default_factory=list)
    distances: List[float] = field(default_factory=list)
    revealed: bool = False


@dataclass(frozen=True)
class PendingRequest:
    """An oracle request awaiting its callback."""
    request_id: str
    query_hash: str
    batch: Tuple[Ciphertext, ...]
    requested_at: float


@dataclass
class RevealedMatch:
    """One revealed point of a query result."""
    point_id: int
    distance: float
    rank: int
