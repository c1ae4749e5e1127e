"""
Reveal protocol: the only path from ciphertext results to plaintext.

States per query:
    NO_REQUEST -> REQUESTED -> REVEALED (terminal)

1. request_reveal sends the result's ciphertext batch to the oracle and
   records a PendingRequest under the oracle's request id.
2. The oracle answers later through on_reveal_callback with a cleartext
   and a proof. The proof is checked against the recorded batch; any
   failure rejects the callback and writes nothing.
3. The first valid callback commits the DecryptedResult and consumes the
   request id, so replays are rejected.

A request the oracle never answers stays REQUESTED; there is no
cancellation here. Timeouts and retries belong to the operator.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Set, Tuple

from geovault.fhe.oracle import DecryptionOracle
from geovault.server.results import ResultStore
from geovault.shared.codec import decode_cleartext
from geovault.shared.errors import (
    AlreadyRevealedError,
    InvalidRequestError,
    ProofVerificationError,
    QueryIncompleteError,
)
from geovault.shared.protocol import (
    SENTINEL_DISTANCE,
    UNRESOLVED_POINT_ID,
    DecryptedResult,
    PendingRequest,
    QueryResult,
    RevealState,
)

logger = logging.getLogger(__name__)


class DecryptionOracleProtocol:
    """
    Asynchronous reveal handshake with single-fulfillment guarantees.

    At most one PendingRequest exists per query at any time.
    """

    def __init__(
        self,
        results: ResultStore,
        oracle: DecryptionOracle,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize reveal protocol.

        Args:
            results: Result store holding encrypted and decrypted results
            oracle: Decryption-request and proof-verification capability
            clock: Wall-clock source for request timestamps
        """
        self.results = results
        self.oracle = oracle
        self._clock = clock
        self._pending: Dict[str, PendingRequest] = {}
        self._request_for_query: Dict[str, str] = {}
        self._consumed: Set[str] = set()
        self._lock = threading.RLock()

    def state(self, query_hash: str) -> RevealState:
        with self._lock:
            if self.results.is_revealed(query_hash):
                return RevealState.REVEALED
            if query_hash in self._request_for_query:
                return RevealState.REQUESTED
            return RevealState.NO_REQUEST

    def pending_requests(self) -> List[PendingRequest]:
        """Outstanding requests, oldest first."""
        with self._lock:
            return sorted(self._pending.values(), key=lambda p: p.requested_at)

    def pending_for(self, query_hash: str) -> Optional[PendingRequest]:
        with self._lock:
            request_id = self._request_for_query.get(query_hash)
            return self._pending.get(request_id) if request_id else None

    def request_reveal(self, query_hash: str) -> str:
        """
        Ask the oracle to decrypt a query result.

        Repeating the call while a request is outstanding returns the same
        request id instead of issuing a second one.

        Returns:
            Oracle request id
        """
        with self._lock:
            if self.results.is_revealed(query_hash):
                raise AlreadyRevealedError(f"Query {query_hash} is already revealed")
            if not self.results.is_complete(query_hash):
                raise QueryIncompleteError(f"Query {query_hash} has no complete result")

            result = self.results.get(query_hash)
            batch = tuple(result.reveal_batch())

            existing = self.pending_for(query_hash)
            if existing is not None:
                if existing.batch == batch:
                    logger.info("Reveal of %s already requested (%s)", query_hash[:12], existing.request_id)
                    return existing.request_id
                # Result was re-stored since the request went out
                self._consume(existing)
                logger.info("Superseded stale reveal request %s", existing.request_id)

            request_id = self.oracle.request_decryption(batch)
            if request_id in self._pending or request_id in self._consumed:
                raise InvalidRequestError(f"Oracle reissued request id {request_id}")

            pending = PendingRequest(
                request_id=request_id,
                query_hash=query_hash,
                batch=batch,
                requested_at=self._clock(),
            )
            self._pending[request_id] = pending
            self._request_for_query[query_hash] = request_id

            logger.info("Reveal of %s requested (%s, %d ciphertexts)", query_hash[:12], request_id, len(batch))
            return request_id

    def on_reveal_callback(self, request_id: str, cleartext: bytes, proof: bytes) -> DecryptedResult:
        """
        Accept a decryption result from the oracle.

        Args:
            request_id: Id returned by request_reveal
            cleartext: Packed plaintext values, in batch order
            proof: Oracle proof over batch and cleartext

        Returns:
            The committed DecryptedResult
        """
        with self._lock:
            pending = self._pending.get(request_id)
            if pending is None:
                logger.warning("Rejected callback for unknown or consumed request %s", request_id)
                raise InvalidRequestError(f"Unknown or consumed request {request_id}")

            query_hash = pending.query_hash
            if self.results.is_revealed(query_hash):
                self._consume(pending)
                raise AlreadyRevealedError(f"Query {query_hash} is already revealed")

            result = self.results.get(query_hash)
            if tuple(result.reveal_batch()) != pending.batch:
                self._consume(pending)
                logger.warning("Rejected callback %s: result was re-stored after the request", request_id)
                raise InvalidRequestError(f"Request {request_id} no longer matches its query result")

            if not self.oracle.verify_proof(pending.batch, cleartext, proof):
                logger.warning("Rejected callback %s: proof verification failed", request_id)
                raise ProofVerificationError(f"Invalid proof for request {request_id}")

            try:
                values = decode_cleartext(cleartext, len(pending.batch))
            except ValueError as err:
                raise ProofVerificationError(f"Malformed cleartext for request {request_id}: {err}") from err

            point_ids, distances = self._decode(result, values)
            decrypted = self.results.commit_reveal(query_hash, point_ids, distances)
            self._consume(pending)

            logger.info("Query %s revealed (%d entries)", query_hash[:12], len(point_ids))
            return decrypted

    @staticmethod
    def _decode(result: QueryResult, values: List[float]) -> Tuple[List[int], List[float]]:
        """Split a cleartext into ids and distances, dropping non-matches."""
        num_ids = len(result.encrypted_point_ids)
        if num_ids:
            candidate_ids = [int(round(v)) for v in values[:num_ids]]
            candidate_distances = values[num_ids:]
        else:
            candidate_ids = list(result.point_ids)
            candidate_distances = values

        point_ids, distances = [], []
        for point_id, distance in zip(candidate_ids, candidate_distances):
            if point_id == UNRESOLVED_POINT_ID or distance == SENTINEL_DISTANCE:
                continue
            point_ids.append(point_id)
            distances.append(distance)
        return point_ids, distances

    def _consume(self, pending: PendingRequest) -> None:
        self._pending.pop(pending.request_id, None)
        self._consumed.add(pending.request_id)
        if self._request_for_query.get(pending.query_hash) == pending.request_id:
            del self._request_for_query[pending.query_hash]
