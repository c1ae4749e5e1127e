"""
Decryption oracle.

The oracle is the only party able to turn ciphertexts back into plaintext.
It answers asynchronously: a request returns an opaque id right away and the
cleartext arrives later, together with a proof the engine must verify
before trusting it.

Proof format: Ed25519 signature over
    SHA-256(handle_1 || ... || handle_n || cleartext)
"""
import hashlib
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from geovault.fhe.base import Ciphertext
from geovault.fhe.simulated import SimulatedBackend
from geovault.shared.codec import encode_cleartext
from geovault.shared.errors import DeliveryError, GeoVaultError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OracleResponse:
    """A decryption result as delivered to the callback surface."""
    request_id: str
    cleartext: bytes
    proof: bytes


RevealCallback = Callable[[str, bytes, bytes], None]


def proof_message(batch: Sequence[Ciphertext], cleartext: bytes) -> bytes:
    """Digest binding a cleartext to the exact ciphertext batch it decrypts."""
    digest = hashlib.sha256()
    for ct in batch:
        digest.update(ct.handle)
    digest.update(cleartext)
    return digest.digest()


class DecryptionOracle(ABC):
    """Abstract decryption-request and proof-verification capability."""

    @abstractmethod
    def request_decryption(self, batch: Sequence[Ciphertext]) -> str:
        """Queue an ordered ciphertext batch for decryption; return a fresh request id."""
        pass

    @abstractmethod
    def verify_proof(self, batch: Sequence[Ciphertext], cleartext: bytes, proof: bytes) -> bool:
        """Check that ``proof`` attests ``cleartext`` is the decryption of ``batch``."""
        pass


class SimulatedOracle(DecryptionOracle):
    """
    In-process oracle backed by a SimulatedBackend.

    Requests sit in a queue until ``respond`` or ``deliver`` is called, which
    models the unbounded delay of a real oracle. A request that is dropped
    is never answered.
    """

    def __init__(
        self,
        backend: SimulatedBackend,
        signing_key: Optional[ed25519.Ed25519PrivateKey] = None,
    ):
        """
        Initialize oracle.

        Args:
            backend: Backend whose ciphertexts this oracle can decrypt
            signing_key: Ed25519 key used to sign proofs (generated if omitted)
        """
        self.backend = backend
        self._signing_key = signing_key or ed25519.Ed25519PrivateKey.generate()
        self.public_key = self._signing_key.public_key()
        self._queue: "OrderedDict[str, List[Ciphertext]]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def public_key_bytes(self) -> bytes:
        return self.public_key.public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )

    @property
    def pending(self) -> List[str]:
        """Request ids not yet answered, oldest first."""
        with self._lock:
            return list(self._queue)

    def request_decryption(self, batch: Sequence[Ciphertext]) -> str:
        request_id = uuid.uuid4().hex
        with self._lock:
            self._queue[request_id] = list(batch)
        logger.debug("Oracle request %s queued (%d ciphertexts)", request_id, len(batch))
        return request_id

    def verify_proof(self, batch: Sequence[Ciphertext], cleartext: bytes, proof: bytes) -> bool:
        try:
            self.public_key.verify(proof, proof_message(batch, cleartext))
        except InvalidSignature:
            return False
        return True

    def respond(self, request_id: Optional[str] = None) -> List[OracleResponse]:
        """
        Decrypt queued requests and sign the results.

        Args:
            request_id: Answer only this request (default: every queued request)

        Returns:
            Signed responses, in request order
        """
        with self._lock:
            if request_id is None:
                jobs = list(self._queue.items())
                self._queue.clear()
            elif request_id in self._queue:
                jobs = [(request_id, self._queue.pop(request_id))]
            else:
                jobs = []

        responses = []
        for rid, batch in jobs:
            cleartext = encode_cleartext([self.backend.unseal(ct) for ct in batch])
            proof = self._signing_key.sign(proof_message(batch, cleartext))
            responses.append(OracleResponse(rid, cleartext, proof))
        return responses

    def deliver(self, callback: RevealCallback, request_id: Optional[str] = None) -> int:
        """
        Answer queued requests through ``callback``.

        Each request leaves the queue only when its response is handed to
        the callback. A rejected callback does not stop the round: the
        remaining responses are delivered and the rejections are raised
        together afterwards as a DeliveryError.

        Returns:
            Number of callbacks accepted
        """
        request_ids = self.pending if request_id is None else [request_id]
        delivered = 0
        failures: List[Tuple[str, GeoVaultError]] = []

        for rid in request_ids:
            for response in self.respond(rid):
                try:
                    callback(response.request_id, response.cleartext, response.proof)
                except GeoVaultError as err:
                    logger.warning("Oracle callback %s rejected: %s", rid, err)
                    failures.append((rid, err))
                else:
                    delivered += 1

        if failures:
            raise DeliveryError(failures, delivered)
        return delivered

    def drop(self, request_id: str) -> None:
        """Forget a request without answering it."""
        with self._lock:
            self._queue.pop(request_id, None)
