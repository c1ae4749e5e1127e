"""
Append-only store of encrypted points.

Points are never mutated or deleted. The point count doubles as the store
version: a reader holding ``snapshot()`` sees exactly the points that
existed when it was taken.
"""
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from geovault.fhe.base import Ciphertext
from geovault.server.index import BaseSpatialIndex
from geovault.shared.errors import NotFoundError
from geovault.shared.protocol import EncryptedPoint

logger = logging.getLogger(__name__)


class EncryptedPointStore:
    """
    Registry of submitted points.

    Ids are assigned as ``previous count + 1`` and index straight into the
    backing list.
    """

    def __init__(
        self,
        index: Optional[BaseSpatialIndex] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize point store.

        Args:
            index: Spatial index notified of every submission
            clock: Wall-clock source for ``submitted_at``
        """
        self.index = index
        self._clock = clock
        self._points: List[EncryptedPoint] = []
        self._by_owner: Dict[str, List[int]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[EncryptedPoint]:
        return iter(self.snapshot())

    @property
    def version(self) -> int:
        return len(self._points)

    def submit(
        self,
        enc_lat: Ciphertext,
        enc_lon: Ciphertext,
        enc_timestamp: Ciphertext,
        owner: Optional[str] = None,
    ) -> int:
        """
        Store a new encrypted point.

        Args:
            enc_lat: Encrypted latitude
            enc_lon: Encrypted longitude
            enc_timestamp: Encrypted event time
            owner: Optional submitter identity

        Returns:
            The new point id
        """
        point = EncryptedPoint(
            id=len(self._points) + 1,
            enc_lat=enc_lat,
            enc_lon=enc_lon,
            enc_timestamp=enc_timestamp,
            submitted_at=self._clock(),
            owner=owner,
        )
        if self.index is not None:
            # Bucket first so a failing index leaves the store untouched
            self.index.add(point)
        self._points.append(point)
        if owner is not None:
            self._by_owner[owner].append(point.id)

        logger.info("Stored point %d", point.id)
        return point.id

    def get(self, point_id: int) -> EncryptedPoint:
        """Fetch a point by id."""
        if not isinstance(point_id, int) or not 1 <= point_id <= len(self._points):
            raise NotFoundError(f"Point {point_id} not found")
        return self._points[point_id - 1]

    def get_many(self, point_ids: List[int]) -> List[EncryptedPoint]:
        """Fetch points by id, in the order given."""
        return [self.get(point_id) for point_id in point_ids]

    def snapshot(self) -> Tuple[EncryptedPoint, ...]:
        """All points stored so far, in id order."""
        return tuple(self._points)

    def ids_by_owner(self, owner: str) -> List[int]:
        """Ids of points submitted by ``owner``, in submission order."""
        return list(self._by_owner.get(owner, []))
