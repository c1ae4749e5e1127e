"""
Engine facade wiring store, index, processor, results and reveal protocol.

Every public operation runs as one transaction under a single re-entrant
lock, so no caller ever observes a half-applied write and queries always
scan a stable point set.
"""
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple


from geovault.fhe.base import Ciphertext, HomomorphicBackend
from geovault.fhe.oracle import DecryptionOracle, SimulatedOracle
from geovault.fhe.simulated import SimulatedBackend
from geovault.server.compute import QueryProcessor
from geovault.server.index import GridIndex
from geovault.server.results import ResultStore
from geovault.server.reveal import DecryptionOracleProtocol
from geovault.server.store import EncryptedPointStore
from geovault.shared.config import GeoVaultSettings, get_settings
from geovault.shared.errors import ConfigurationError, InvalidCiphertextError
from geovault.shared.protocol import (
    DecryptedResult,
    EncryptedPoint,
    QueryResult,
    RevealState,
)

logger = logging.getLogger(__name__)


@dataclass
class EngineStats:
    """Engine counters."""
    num_points: int
    num_cells: int
    num_queries: int
    num_complete: int
    num_pending_reveals: int
    num_revealed: int
    leaks_cell_membership: bool
    last_eval_ms: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class SpatioTemporalEngine:
    """
    Encrypted spatiotemporal query engine.

    Usage:
        engine = SpatioTemporalEngine()
        crypto = CryptoClient(engine.backend)
        point_id = engine.submit_point(*crypto.encrypt_point(1.0, 2.0, 100.0))
        query_hash = engine.range_query(0.0, 0.0, 5.0, 0.0, 200.0)
        engine.request_reveal(query_hash)
        engine.deliver_oracle_responses()
        engine.get_decrypted(query_hash).point_ids  # [point_id]
    """

    def __init__(
        self,
        backend: Optional[HomomorphicBackend] = None,
        oracle: Optional[DecryptionOracle] = None,
        settings: Optional[GeoVaultSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize engine.

        Args:
            backend: Homomorphic backend (default: SimulatedBackend)
            oracle: Decryption oracle (default: SimulatedOracle over a simulated backend)
            settings: Engine settings (default: process settings)
            clock: Wall-clock source shared by all components
        """
        self.settings = settings or get_settings()
        self.backend = backend if backend is not None else SimulatedBackend()

        if oracle is None:
            if not isinstance(self.backend, SimulatedBackend):
                raise ConfigurationError("An oracle is required for non-simulated backends")
            oracle = SimulatedOracle(self.backend)
        self.oracle = oracle

        self.index = GridIndex(self.backend, cell_size=self.settings.CELL_SIZE)
        self.store = EncryptedPointStore(index=self.index, clock=clock)
        self.results = ResultStore()
        self.processor = QueryProcessor(
            self.backend,
            self.store,
            self.index,
            self.results,
            reduction=self.settings.NN_REDUCTION,
            num_workers=self.settings.PARALLEL_WORKERS,
            clock=clock,
        )
        self.protocol = DecryptionOracleProtocol(self.results, self.oracle, clock=clock)
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator["SpatioTemporalEngine"]:
        """Hold the engine lock for a group of operations."""
        with self._lock:
            yield self

    # Points

    def submit_point(
        self,
        enc_lat: Ciphertext,
        enc_lon: Ciphertext,
        enc_timestamp: Ciphertext,
        owner: Optional[str] = None,
    ) -> int:
        for ct in (enc_lat, enc_lon, enc_timestamp):
            if not self.backend.is_valid(ct):
                raise InvalidCiphertextError(f"Ciphertext {ct!r} was not issued by this backend")
        with self._lock:
            return self.store.submit(enc_lat, enc_lon, enc_timestamp, owner=owner)

    def get_point(self, point_id: int) -> EncryptedPoint:
        with self._lock:
            return self.store.get(point_id)

    # Queries

    def range_query(
        self,
        center_lat: float,
        center_lon: float,
        radius: float,
        start_time: float,
        end_time: float,
    ) -> str:
        with self._lock:
            return self.processor.range_query(center_lat, center_lon, radius, start_time, end_time)

    def nearest_neighbor(self, target_lat: float, target_lon: float) -> Tuple[str, Ciphertext]:
        with self._lock:
            return self.processor.nearest_neighbor(target_lat, target_lon)

    def get_result(self, query_hash: str) -> QueryResult:
        with self._lock:
            return self.results.get(query_hash)

    def get_decrypted(self, query_hash: str) -> DecryptedResult:
        with self._lock:
            return self.results.get_decrypted(query_hash)

    # Reveal

    def request_reveal(self, query_hash: str) -> str:
        with self._lock:
            return self.protocol.request_reveal(query_hash)

    def on_reveal_callback(self, request_id: str, cleartext: bytes, proof: bytes) -> DecryptedResult:
        with self._lock:
            return self.protocol.on_reveal_callback(request_id, cleartext, proof)

    def reveal_state(self, query_hash: str) -> RevealState:
        with self._lock:
            return self.protocol.state(query_hash)

    def deliver_oracle_responses(self, request_id: Optional[str] = None) -> int:
        """
        Let the simulated oracle answer queued requests.

        Raises DeliveryError after the round if any callback was rejected.

        Returns:
            Number of callbacks accepted
        """
        if not isinstance(self.oracle, SimulatedOracle):
            raise ConfigurationError("Only a simulated oracle can be driven in-process")
        return self.oracle.deliver(self.on_reveal_callback, request_id)

    # Introspection

    def stats(self) -> EngineStats:
        with self._lock:
            return EngineStats(
                num_points=len(self.store),
                num_cells=self.index.num_cells,
                num_queries=len(self.results),
                num_complete=self.results.count(complete=True),
                num_pending_reveals=len(self.protocol.pending_requests()),
                num_revealed=self.results.count(revealed=True),
                leaks_cell_membership=self.index.leaks_location,
                last_eval_ms=self.processor.last_eval_ms,
            )
