"""
Client-side query orchestration.

Coordinates the full query flow:
1. Encrypt and submit points
2. Issue an encrypted range or nearest-neighbor query
3. Request the reveal and wait for the oracle
4. Rank the revealed matches
"""
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from geovault.client.crypto import CryptoClient
from geovault.server.engine import SpatioTemporalEngine
from geovault.shared.protocol import RevealedMatch
from geovault.shared.utils import Timer, plaintext_nearest, plaintext_range_matches


class SearchClient:
    """
    Client-side query coordinator.

    Handles the submit / query / reveal lifecycle against an engine.
    """

    def __init__(
        self,
        crypto_client: CryptoClient,
        engine: SpatioTemporalEngine,
        await_reveal: Optional[Callable[[str], object]] = None,
    ):
        """
        Initialize search client.

        Args:
            crypto_client: Encrypts points before submission
            engine: Query engine
            await_reveal: Blocks until the oracle has answered a request id
                          (default: drive the engine's simulated oracle)
        """
        self.crypto = crypto_client
        self.engine = engine
        self.await_reveal = await_reveal or engine.deliver_oracle_responses

    def submit_points(self, points: np.ndarray, owner: Optional[str] = None) -> List[int]:
        """
        Encrypt and submit points.

        Args:
            points: Array of shape (n, 3): lat, lon, timestamp
            owner: Optional submitter identity

        Returns:
            Assigned point ids, in row order
        """
        return [
            self.engine.submit_point(*encrypted, owner=owner)
            for encrypted in self.crypto.encrypt_points(points)
        ]

    def range_search(
        self,
        center_lat: float,
        center_lon: float,
        radius: float,
        start_time: float,
        end_time: float,
        verbose: bool = False,
    ) -> Tuple[List[RevealedMatch], dict]:
        """
        Run a range query and reveal it.

        Returns:
            Tuple of (matches ranked by distance, timing info)
        """
        timing = {}

        if verbose:
            print("Step 1: Evaluating encrypted range query...")
        with Timer() as t:
            query_hash = self.engine.range_query(center_lat, center_lon, radius, start_time, end_time)
        timing["query_ms"] = t.elapsed_ms

        if verbose:
            print("Step 2: Revealing result...")
        with Timer() as t:
            decrypted = self._reveal(query_hash)
        timing["reveal_ms"] = t.elapsed_ms

        order = np.argsort(decrypted.distances, kind="stable") if decrypted.distances else []
        results = [
            RevealedMatch(
                point_id=decrypted.point_ids[i],
                distance=decrypted.distances[i],
                rank=rank + 1,
            )
            for rank, i in enumerate(order)
        ]

        timing["total_ms"] = timing["query_ms"] + timing["reveal_ms"]
        if verbose:
            print(f"  {len(results)} matches, total time: {timing['total_ms']:.2f}ms")

        return results, timing

    def nearest_search(
        self,
        target_lat: float,
        target_lon: float,
        verbose: bool = False,
    ) -> Tuple[Optional[RevealedMatch], dict]:
        """
        Run a nearest-neighbor query and reveal it.

        Returns:
            Tuple of (nearest point or None for an empty store, timing info)
        """
        timing = {}

        if verbose:
            print("Step 1: Evaluating encrypted nearest-neighbor query...")
        with Timer() as t:
            query_hash, _ = self.engine.nearest_neighbor(target_lat, target_lon)
        timing["query_ms"] = t.elapsed_ms

        with Timer() as t:
            decrypted = self._reveal(query_hash)
        timing["reveal_ms"] = t.elapsed_ms
        timing["total_ms"] = timing["query_ms"] + timing["reveal_ms"]

        if not decrypted.point_ids:
            return None, timing
        return RevealedMatch(decrypted.point_ids[0], decrypted.distances[0], rank=1), timing

    def _reveal(self, query_hash: str):
        request_id = self.engine.request_reveal(query_hash)
        self.await_reveal(request_id)
        return self.engine.get_decrypted(query_hash)

    def verify_accuracy(
        self,
        points: np.ndarray,
        point_ids: Sequence[int],
        results: List[RevealedMatch],
        center_lat: float,
        center_lon: float,
        radius: float,
        start_time: float,
        end_time: float,
    ) -> dict:
        """
        Compare revealed range matches with a plaintext evaluation.

        For testing/validation only - in production, the client never holds
        the plaintext database.
        """
        expected = {
            point_ids[i]
            for i in plaintext_range_matches(points, center_lat, center_lon, radius, start_time, end_time)
        }
        revealed = {r.point_id for r in results}

        return {
            "exact_match": expected == revealed,
            "missing": sorted(expected - revealed),
            "unexpected": sorted(revealed - expected),
        }

    def verify_nearest(
        self,
        points: np.ndarray,
        point_ids: Sequence[int],
        result: Optional[RevealedMatch],
        target_lat: float,
        target_lon: float,
    ) -> bool:
        """Whether the revealed nearest point matches a plaintext scan."""
        if len(points) == 0:
            return result is None
        return result is not None and result.point_id == point_ids[plaintext_nearest(points, target_lat, target_lon)]
