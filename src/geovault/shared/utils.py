"""
Shared utility functions.
"""
import hashlib
import math
import struct
import time
from typing import List, Optional, Sequence, Tuple

import numpy as np

from geovault.shared.protocol import QueryKind


def compute_query_hash(
    kind: QueryKind,
    params: Sequence[float],
    current_time: float,
) -> str:
    """
    Derive the identifier of a query.

    The submission time is part of the input, so the same parameters
    issued at different times never share a hash.

    Args:
        kind: Query kind (domain separator)
        params: Plaintext query parameters, in a fixed order
        current_time: Wall-clock submission time

    Returns:
        Hex-encoded SHA-256 digest
    """
    digest = hashlib.sha256(kind.value.encode("utf-8"))
    digest.update(struct.pack(f">{len(params) + 1}d", *params, current_time))
    return digest.hexdigest()


def planar_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Planar distance in coordinate units (plaintext, for verification).

    Same approximation the encrypted evaluation uses; not great-circle.
    """
    return math.sqrt((lat2 - lat1) ** 2 + (lon2 - lon1) ** 2)


def generate_random_points(
    num_points: int,
    seed: Optional[int] = None,
    lat_range: Tuple[float, float] = (-90.0, 90.0),
    lon_range: Tuple[float, float] = (-180.0, 180.0),
    time_range: Tuple[float, float] = (0.0, 86400.0),
) -> np.ndarray:
    """
    Generate random spatiotemporal points for testing.

    Args:
        num_points: Number of points to generate
        seed: Random seed for reproducibility
        lat_range: Latitude bounds
        lon_range: Longitude bounds
        time_range: Timestamp bounds

    Returns:
        Array of shape (num_points, 3): lat, lon, timestamp
    """
    rng = np.random.default_rng(seed)
    lats = rng.uniform(*lat_range, size=num_points)
    lons = rng.uniform(*lon_range, size=num_points)
    times = rng.uniform(*time_range, size=num_points)
    return np.column_stack([lats, lons, times])


def plaintext_range_matches(
    points: np.ndarray,
    center_lat: float,
    center_lon: float,
    radius: float,
    start_time: float,
    end_time: float,
) -> List[int]:
    """
    Indices of points inside a range query (plaintext, for verification).

    Args:
        points: Array of shape (n, 3): lat, lon, timestamp

    Returns:
        Matching row indices, ascending
    """
    if len(points) == 0:
        return []
    distances = np.sqrt((points[:, 0] - center_lat) ** 2 + (points[:, 1] - center_lon) ** 2)
    mask = (distances <= radius) & (points[:, 2] >= start_time) & (points[:, 2] <= end_time)
    return np.flatnonzero(mask).tolist()


def plaintext_nearest(points: np.ndarray, target_lat: float, target_lon: float) -> int:
    """Index of the first point closest to the target (plaintext, for verification)."""
    distances = np.sqrt((points[:, 0] - target_lat) ** 2 + (points[:, 1] - target_lon) ** 2)
    return int(np.argmin(distances))


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.perf_counter() - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.elapsed is None:
            if self.start_time is not None:
                return (time.perf_counter() - self.start_time) * 1000
            return 0.0
        return self.elapsed * 1000
