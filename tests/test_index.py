"""Tests for the grid index."""
import pytest

from geovault.client.crypto import CryptoClient
from geovault.server.index import SINGLE_CELL, GridIndex
from geovault.shared.protocol import EncryptedPoint
from geovault.shared.utils import generate_random_points, planar_distance


def add_points(index, crypto, coords):
    ids = []
    for i, (lat, lon) in enumerate(coords, start=1):
        enc_lat, enc_lon, enc_ts = crypto.encrypt_point(lat, lon, 0.0)
        index.add(EncryptedPoint(i, enc_lat, enc_lon, enc_ts, submitted_at=0.0))
        ids.append(i)
    return ids


class TestGridIndex:
    """Test grid bucketing and candidate pruning."""

    def test_cell_keys(self, backend):
        index = GridIndex(backend, cell_size=10.0)
        add_points(index, CryptoClient(backend), [(15, -25), (-0.5, 0.5)])

        assert index.cell_key_of(1) == (1, -3)
        assert index.cell_key_of(2) == (-1, 0)

    def test_large_cell_indices(self, backend):
        """Fine cells far from the origin are still found."""
        index = GridIndex(backend, cell_size=1e-6)
        add_points(index, CryptoClient(backend), [(0, 3000), (-4000, -3000), (0, 0)])

        assert index.cell_key_of(1) == (0, 3_000_000_000)
        assert index.candidates_for(0, 3000, 1.0) == [1]
        assert index.candidates_for(-4000, -3000, 1.0) == [2]
        assert index.candidates_for(0, 0, 1.0) == [3]

    def test_single_cell_mode(self, backend):
        """Without a cell size, every point shares one cell and nothing is quantized."""
        index = GridIndex(backend, cell_size=None)
        ids = add_points(index, CryptoClient(backend), [(0, 0), (50, 50), (-80, 170)])

        assert not index.leaks_location
        assert index.num_cells == 1
        assert index.candidates_for(0, 0, 1) == ids
        assert index.cell_members(SINGLE_CELL) == ids

    def test_each_point_in_exactly_one_cell(self, backend):
        index = GridIndex(backend, cell_size=10.0)
        ids = add_points(index, CryptoClient(backend), [(1, 1), (2, 2), (15, 15), (-5, -5)])

        memberships = [
            point_id
            for key in {index.cell_key_of(i) for i in ids}
            for point_id in index.cell_members(key)
        ]
        assert sorted(memberships) == ids
        assert index.num_cells == 3
        assert index.cell_members(index.cell_key_of(1)) == [1, 2]

    def test_pruning(self, backend):
        index = GridIndex(backend, cell_size=1.0)
        add_points(index, CryptoClient(backend), [(0.5, 0.5), (10.5, 10.5)])

        assert index.candidates_for(0.0, 0.0, 1.0) == [1]

    def test_candidates_are_superset(self, backend):
        """No point within the radius may be pruned."""
        index = GridIndex(backend, cell_size=7.5)
        points = generate_random_points(300, seed=7)
        ids = add_points(index, CryptoClient(backend), points[:, :2].tolist())

        for center_lat, center_lon, radius in [(0, 0, 20), (45, -100, 5), (-60, 120, 33.3), (10, 10, 0)]:
            candidates = set(index.candidates_for(center_lat, center_lon, radius))
            for point_id, (lat, lon) in zip(ids, points[:, :2]):
                if planar_distance(lat, lon, center_lat, center_lon) <= radius:
                    assert point_id in candidates

    def test_boundary_point_included(self, backend):
        index = GridIndex(backend, cell_size=1.0)
        add_points(index, CryptoClient(backend), [(2.0, 0.0)])

        assert index.candidates_for(0.0, 0.0, 2.0) == [1]

    def test_negative_radius(self, backend):
        index = GridIndex(backend, cell_size=1.0)
        add_points(index, CryptoClient(backend), [(0, 0)])

        assert index.candidates_for(0, 0, -1) == []

    def test_duplicate_add_rejected(self, backend):
        index = GridIndex(backend, cell_size=1.0)
        crypto = CryptoClient(backend)
        point = EncryptedPoint(1, *crypto.encrypt_point(0, 0, 0), submitted_at=0.0)
        index.add(point)

        with pytest.raises(ValueError, match="already indexed"):
            index.add(point)

    @pytest.mark.parametrize("cell_size", [0, -1.0])
    def test_invalid_cell_size(self, backend, cell_size):
        with pytest.raises(ValueError, match="cell_size"):
            GridIndex(backend, cell_size=cell_size)
