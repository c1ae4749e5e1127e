"""
Grid index for coarse candidate filtering.

Points are bucketed into square cells so range queries only evaluate
candidates near the query footprint homomorphically.

Bucketing needs ``floor(coordinate / cell_size)`` in the clear, so a grid
with a finite cell size leaks every point's cell to the server. With
``cell_size=None`` all points share one cell: nothing leaks, and every
query falls back to a full encrypted scan.
"""
import logging
import math
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from geovault.fhe.base import Ciphertext, HomomorphicBackend
from geovault.shared.protocol import EncryptedPoint

logger = logging.getLogger(__name__)

# (lat cell index, lon cell index); unbounded on both axes
CellKey = Tuple[int, int]

SINGLE_CELL: CellKey = (0, 0)


class BaseSpatialIndex(ABC):
    """Abstract base class for spatial candidate indices."""

    @abstractmethod
    def add(self, point: EncryptedPoint) -> CellKey:
        """Bucket a point; return its cell key."""
        pass

    @abstractmethod
    def candidates_for(self, center_lat: float, center_lon: float, radius: float) -> List[int]:
        """
        Ids of points that may lie within ``radius`` of the center.

        Must be a superset of the true matches.
        """
        pass

    @property
    @abstractmethod
    def ntotal(self) -> int:
        """Total number of indexed points."""
        pass


class GridIndex(BaseSpatialIndex):
    """
    Uniform grid over (lat, lon).

    Every indexed point id sits in exactly one cell, in insertion order.
    """

    def __init__(self, backend: HomomorphicBackend, cell_size: Optional[float] = None):
        """
        Initialize grid index.

        Args:
            backend: Homomorphic backend used to quantize coordinates
            cell_size: Cell edge in coordinate units; None disables bucketing
        """
        if cell_size is not None and not cell_size > 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")

        self.backend = backend
        self.cell_size = cell_size
        self._cells: Dict[CellKey, List[int]] = defaultdict(list)
        self._cell_of_point: Dict[int, CellKey] = {}

        if cell_size is not None:
            logger.warning(
                "Grid index enabled with cell_size=%s: cell membership of every point is visible to the server",
                cell_size,
            )

    @property
    def leaks_location(self) -> bool:
        return self.cell_size is not None

    def cell_of(self, enc_lat: Ciphertext, enc_lon: Ciphertext) -> CellKey:
        """Cell key for an encrypted coordinate pair."""
        if self.cell_size is None:
            return SINGLE_CELL
        return (
            self.backend.quantize(enc_lat, self.cell_size),
            self.backend.quantize(enc_lon, self.cell_size),
        )

    def add(self, point: EncryptedPoint) -> CellKey:
        if point.id in self._cell_of_point:
            raise ValueError(f"Point {point.id} already indexed")

        key = self.cell_of(point.enc_lat, point.enc_lon)
        self._cells[key].append(point.id)
        self._cell_of_point[point.id] = key
        return key

    def candidates_for(self, center_lat: float, center_lon: float, radius: float) -> List[int]:
        if radius < 0:
            return []

        if self.cell_size is None:
            return list(self._cells.get(SINGLE_CELL, []))

        lat_lo = math.floor((center_lat - radius) / self.cell_size)
        lat_hi = math.floor((center_lat + radius) / self.cell_size)
        lon_lo = math.floor((center_lon - radius) / self.cell_size)
        lon_hi = math.floor((center_lon + radius) / self.cell_size)

        candidates = []
        for (lat_index, lon_index), ids in self._cells.items():
            if lat_lo <= lat_index <= lat_hi and lon_lo <= lon_index <= lon_hi:
                candidates.extend(ids)

        return sorted(candidates)

    def cell_members(self, key: CellKey) -> List[int]:
        """Point ids in one cell, in insertion order."""
        return list(self._cells.get(key, []))

    def cell_key_of(self, point_id: int) -> CellKey:
        return self._cell_of_point[point_id]

    @property
    def num_cells(self) -> int:
        return len(self._cells)

    @property
    def ntotal(self) -> int:
        return len(self._cell_of_point)
