"""
Server-side homomorphic query evaluation.

The server evaluates range and nearest-neighbor queries without seeing:
- Point coordinates or timestamps (they are ciphertexts)
- Which candidates matched, or which point is nearest (results are encrypted)

Distances use the planar approximation
    sqrt((lat2 - lat1)^2 + (lon2 - lon1)^2)
because trigonometric functions are not available as homomorphic
primitives. This is not great-circle distance.
"""
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Iterator, List, Literal, Sequence, Tuple, TypeVar

from geovault.fhe.base import Ciphertext, HomomorphicBackend
from geovault.server.index import BaseSpatialIndex
from geovault.server.results import ResultStore
from geovault.server.store import EncryptedPointStore
from geovault.shared.protocol import (
    SENTINEL_DISTANCE,
    UNRESOLVED_POINT_ID,
    EncryptedPoint,
    QueryKind,
)
from geovault.shared.utils import Timer, compute_query_hash

logger = logging.getLogger(__name__)

# (encrypted distance, encrypted point id)
Candidate = Tuple[Ciphertext, Ciphertext]

T = TypeVar("T")
R = TypeVar("R")


class QueryProcessor:
    """
    Evaluates encrypted range and nearest-neighbor queries.

    The processor never decrypts. Range results encode non-matches with
    SENTINEL_DISTANCE; nearest-neighbor results keep the winning id
    encrypted until revealed.
    """

    def __init__(
        self,
        backend: HomomorphicBackend,
        store: EncryptedPointStore,
        index: BaseSpatialIndex,
        results: ResultStore,
        reduction: Literal["tree", "sequential"] = "tree",
        num_workers: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize query processor.

        Args:
            backend: Homomorphic arithmetic capability
            store: Encrypted points
            index: Candidate index for range queries
            results: Where encrypted results are persisted
            reduction: Nearest-neighbor strategy ("tree" or "sequential")
            num_workers: Threads used per tree level and for distance batches
            clock: Wall-clock source for query hashes
        """
        if reduction not in ("tree", "sequential"):
            raise ValueError(f"Unknown reduction {reduction!r}")
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")

        self.backend = backend
        self.store = store
        self.index = index
        self.results = results
        self.reduction = reduction
        self.num_workers = num_workers
        self._clock = clock
        self.last_eval_ms = 0.0  # duration of the most recent evaluation

    def distance(
        self,
        lat1: Ciphertext,
        lon1: Ciphertext,
        lat2: Ciphertext,
        lon2: Ciphertext,
    ) -> Ciphertext:
        """Encrypted planar distance between two encrypted coordinate pairs."""
        be = self.backend
        with self._scratch() as temps:
            d_lat = temps.add(be.sub(lat2, lat1))
            d_lon = temps.add(be.sub(lon2, lon1))
            total = temps.add(be.add(temps.add(be.square(d_lat)), temps.add(be.square(d_lon))))
            return be.sqrt(total)

    def range_query(
        self,
        center_lat: float,
        center_lon: float,
        radius: float,
        start_time: float,
        end_time: float,
    ) -> str:
        """
        Evaluate a spatiotemporal range query.

        A point matches when its distance to the center is <= radius and
        start_time <= timestamp <= end_time (both bounds inclusive).

        Returns:
            Query hash of the stored encrypted result
        """
        query_hash = compute_query_hash(
            QueryKind.RANGE,
            [center_lat, center_lon, radius, start_time, end_time],
            self._clock(),
        )
        self.results.open(query_hash, QueryKind.RANGE)

        try:
            with Timer() as t, self._scratch() as constants:
                candidate_ids = self.index.candidates_for(center_lat, center_lon, radius)
                points = self.store.get_many(candidate_ids)

                be = self.backend
                enc_center_lat = constants.add(be.encrypt(center_lat))
                enc_center_lon = constants.add(be.encrypt(center_lon))
                enc_radius = constants.add(be.encrypt(radius))
                enc_start = constants.add(be.encrypt(start_time))
                enc_end = constants.add(be.encrypt(end_time))
                enc_sentinel = constants.add(be.encrypt(SENTINEL_DISTANCE))

                def evaluate(point: EncryptedPoint) -> Ciphertext:
                    with self._scratch() as temps:
                        dist = temps.add(self.distance(point.enc_lat, point.enc_lon, enc_center_lat, enc_center_lon))
                        within_space = temps.add(be.le(dist, enc_radius))
                        within_time = temps.add(be.logical_and(
                            temps.add(be.ge(point.enc_timestamp, enc_start)),
                            temps.add(be.le(point.enc_timestamp, enc_end)),
                        ))
                        match = temps.add(be.logical_and(within_space, within_time))
                        return be.select(match, dist, enc_sentinel)

                encrypted_distances = self._map(evaluate, points)
        except Exception:
            self.results.discard(query_hash)
            raise

        self.results.store(query_hash, candidate_ids, encrypted_distances, kind=QueryKind.RANGE)
        self.last_eval_ms = t.elapsed_ms

        logger.info(
            "Range query %s evaluated %d/%d candidates in %.1fms",
            query_hash[:12], len(candidate_ids), len(self.store), t.elapsed_ms,
        )
        return query_hash

    def nearest_neighbor(self, target_lat: float, target_lon: float) -> Tuple[str, Ciphertext]:
        """
        Find the stored point closest to the target, under encryption.

        Ties go to the earliest submitted point. With no stored points the
        encrypted id is UNRESOLVED_POINT_ID.

        Returns:
            Tuple of (query_hash, encrypted nearest point id)
        """
        query_hash = compute_query_hash(
            QueryKind.NEAREST,
            [target_lat, target_lon],
            self._clock(),
        )
        self.results.open(query_hash, QueryKind.NEAREST)

        try:
            with Timer() as t, self._scratch() as constants:
                be = self.backend
                enc_target_lat = constants.add(be.encrypt(target_lat))
                enc_target_lon = constants.add(be.encrypt(target_lon))

                def to_candidate(point: EncryptedPoint) -> Candidate:
                    dist = self.distance(point.enc_lat, point.enc_lon, enc_target_lat, enc_target_lon)
                    return dist, be.encrypt(float(point.id))

                candidates = self._map(to_candidate, self.store.snapshot())

                if self.reduction == "tree":
                    min_distance, nearest_id = self.reduce_tree(candidates, release_inputs=True)
                else:
                    min_distance, nearest_id = self.fold_sequential(candidates, release_inputs=True)
        except Exception:
            self.results.discard(query_hash)
            raise

        self.results.store(
            query_hash,
            [UNRESOLVED_POINT_ID],
            [min_distance],
            kind=QueryKind.NEAREST,
            encrypted_point_ids=[nearest_id],
        )
        self.last_eval_ms = t.elapsed_ms

        logger.info(
            "Nearest-neighbor query %s scanned %d points (%s) in %.1fms",
            query_hash[:12], len(candidates), self.reduction, t.elapsed_ms,
        )
        return query_hash, nearest_id

    def min_select(self, left: Candidate, right: Candidate) -> Candidate:
        """Encrypted min over (distance, id) pairs; ties keep ``left``."""
        be = self.backend
        with self._scratch() as temps:
            right_closer = temps.add(be.lt(right[0], left[0]))
            return (
                be.select(right_closer, right[0], left[0]),
                be.select(right_closer, right[1], left[1]),
            )

    def fold_sequential(self, candidates: Sequence[Candidate], release_inputs: bool = False) -> Candidate:
        """
        Left fold of ``min_select`` from an (infinity, no point) accumulator.

        Superseded accumulators are released. With ``release_inputs`` the
        candidates are released too, once folded in.
        """
        acc = self._empty_candidate()
        for candidate in candidates:
            merged = self.min_select(acc, candidate)
            self.backend.release(acc + candidate if release_inputs else acc)
            acc = merged
        return acc

    def reduce_tree(self, candidates: Sequence[Candidate], release_inputs: bool = False) -> Candidate:
        """
        Pairwise reduction of ``min_select``.

        Adjacent pairs are combined level by level, keeping their order, so
        the result matches ``fold_sequential`` including tie-breaking.
        Pairs within a level are independent and may run in parallel.
        Intermediate pairs are released as each level completes; the
        caller's candidates only with ``release_inputs``.
        """
        level = list(candidates)
        if not level:
            return self._empty_candidate()

        kept = set() if release_inputs else set(level)
        while len(level) > 1:
            pairs = [(level[i], level[i + 1]) for i in range(0, len(level) - 1, 2)]
            reduced = self._map(lambda pair: self.min_select(*pair), pairs)
            self.backend.release(
                ct for pair in pairs for candidate in pair if candidate not in kept for ct in candidate
            )
            if len(level) % 2:
                reduced.append(level[-1])
            level = reduced
        return level[0]

    def _empty_candidate(self) -> Candidate:
        return self.backend.encrypt(math.inf), self.backend.encrypt(float(UNRESOLVED_POINT_ID))

    @contextmanager
    def _scratch(self) -> Iterator["_Scratch"]:
        """Collect temporaries and release them on exit."""
        temps = _Scratch()
        try:
            yield temps
        finally:
            self.backend.release(temps)

    def _map(self, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
        """Apply ``fn`` to every item, keeping order."""
        if self.num_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                return list(executor.map(fn, items))
        return [fn(item) for item in items]


class _Scratch(list):
    """Temporary ciphertexts of one evaluation step."""

    def add(self, ct: Ciphertext) -> Ciphertext:
        self.append(ct)
        return ct
