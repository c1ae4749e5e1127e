"""
Per-query result storage.

Holds the encrypted QueryResult produced by the query processor and the
DecryptedResult that the reveal protocol fills in once.
"""
import logging
from typing import Dict, List, Optional, Sequence

from geovault.fhe.base import Ciphertext
from geovault.shared.errors import (
    AlreadyRevealedError,
    LengthMismatchError,
    NotFoundError,
)
from geovault.shared.protocol import DecryptedResult, QueryKind, QueryResult

logger = logging.getLogger(__name__)


class ResultStore:
    """
    Query results keyed by query hash.

    Re-storing a hash overwrites the encrypted result (no versioning) until
    it is revealed; after that the entry is frozen.
    """

    def __init__(self):
        self._results: Dict[str, QueryResult] = {}
        self._decrypted: Dict[str, DecryptedResult] = {}

    def __contains__(self, query_hash: str) -> bool:
        return query_hash in self._results

    def __len__(self) -> int:
        return len(self._results)

    def open(self, query_hash: str, kind: QueryKind = QueryKind.RANGE) -> QueryResult:
        """
        Register a query whose evaluation has started.

        The result stays ``complete=False`` until ``store`` is called.
        """
        self._ensure_not_revealed(query_hash)
        result = QueryResult(query_hash=query_hash, kind=kind)
        self._results[query_hash] = result
        return result

    def store(
        self,
        query_hash: str,
        point_ids: Sequence[int],
        encrypted_distances: Sequence[Ciphertext],
        kind: QueryKind = QueryKind.RANGE,
        encrypted_point_ids: Optional[Sequence[Ciphertext]] = None,
    ) -> QueryResult:
        """
        Persist a finished encrypted result.

        Args:
            query_hash: Query identifier
            point_ids: Plaintext ids, parallel to encrypted_distances
            encrypted_distances: Encrypted distances
            kind: Query kind
            encrypted_point_ids: Encrypted ids (nearest-neighbor results only)

        Returns:
            The stored result, marked complete
        """
        if len(point_ids) != len(encrypted_distances):
            raise LengthMismatchError(
                f"{len(point_ids)} point ids but {len(encrypted_distances)} encrypted distances"
            )
        encrypted_point_ids = list(encrypted_point_ids or [])
        if encrypted_point_ids and len(encrypted_point_ids) != len(point_ids):
            raise LengthMismatchError(
                f"{len(point_ids)} point ids but {len(encrypted_point_ids)} encrypted point ids"
            )
        self._ensure_not_revealed(query_hash)

        result = QueryResult(
            query_hash=query_hash,
            kind=kind,
            point_ids=list(point_ids),
            encrypted_distances=list(encrypted_distances),
            encrypted_point_ids=encrypted_point_ids,
            complete=True,
        )
        self._results[query_hash] = result
        self._decrypted[query_hash] = DecryptedResult(query_hash=query_hash)

        logger.info("Stored %s result %s (%d entries)", kind.value, query_hash[:12], len(point_ids))
        return result

    def discard(self, query_hash: str) -> None:
        """Drop a result whose evaluation failed. Complete results are kept."""
        result = self._results.get(query_hash)
        if result is not None and not result.complete:
            del self._results[query_hash]

    def get(self, query_hash: str) -> QueryResult:
        try:
            return self._results[query_hash]
        except KeyError:
            raise NotFoundError(f"Query {query_hash} not found") from None

    def get_decrypted(self, query_hash: str) -> DecryptedResult:
        try:
            return self._decrypted[query_hash]
        except KeyError:
            raise NotFoundError(f"No decrypted result for query {query_hash}") from None

    def is_complete(self, query_hash: str) -> bool:
        result = self._results.get(query_hash)
        return result is not None and result.complete

    def is_revealed(self, query_hash: str) -> bool:
        decrypted = self._decrypted.get(query_hash)
        return decrypted is not None and decrypted.revealed

    def commit_reveal(
        self,
        query_hash: str,
        point_ids: List[int],
        distances: List[float],
    ) -> DecryptedResult:
        """Write the plaintext result. Allowed once per query."""
        if len(point_ids) != len(distances):
            raise LengthMismatchError(
                f"{len(point_ids)} point ids but {len(distances)} distances"
            )
        if not self.is_complete(query_hash):
            raise NotFoundError(f"No complete result for query {query_hash}")
        self._ensure_not_revealed(query_hash)

        decrypted = DecryptedResult(
            query_hash=query_hash,
            point_ids=list(point_ids),
            distances=list(distances),
            revealed=True,
        )
        self._decrypted[query_hash] = decrypted
        return decrypted

    def count(self, complete: Optional[bool] = None, revealed: Optional[bool] = None) -> int:
        """Number of results matching the given flags."""
        total = 0
        for query_hash, result in self._results.items():
            if complete is not None and result.complete != complete:
                continue
            if revealed is not None and self.is_revealed(query_hash) != revealed:
                continue
            total += 1
        return total

    def _ensure_not_revealed(self, query_hash: str) -> None:
        if self.is_revealed(query_hash):
            raise AlreadyRevealedError(f"Query {query_hash} is already revealed")
