"""Tests for the result store."""
import pytest

from geovault.server.results import ResultStore
from geovault.shared.errors import AlreadyRevealedError, LengthMismatchError, NotFoundError
from geovault.shared.protocol import QueryKind


class TestResultStore:
    """Test encrypted and decrypted result storage."""

    def test_store_marks_complete(self, backend):
        results = ResultStore()
        distances = [backend.encrypt(1.0), backend.encrypt(2.0)]
        result = results.store("q1", [1, 2], distances)

        assert result.complete
        assert results.get("q1").point_ids == [1, 2]
        assert results.get("q1").encrypted_distances == distances

        decrypted = results.get_decrypted("q1")
        assert not decrypted.revealed
        assert decrypted.point_ids == []

    def test_length_mismatch(self, backend):
        results = ResultStore()

        with pytest.raises(LengthMismatchError):
            results.store("q1", [1, 2], [backend.encrypt(1.0)])
        assert "q1" not in results

    def test_encrypted_id_length_mismatch(self, backend):
        results = ResultStore()

        with pytest.raises(LengthMismatchError):
            results.store(
                "q1", [0], [backend.encrypt(1.0)],
                kind=QueryKind.NEAREST,
                encrypted_point_ids=[backend.encrypt(1.0), backend.encrypt(2.0)],
            )

    def test_open_is_incomplete(self):
        results = ResultStore()
        results.open("q1")

        assert "q1" in results
        assert not results.is_complete("q1")
        assert results.count(complete=False) == 1

    def test_restore_overwrites(self, backend):
        results = ResultStore()
        results.store("q1", [1], [backend.encrypt(1.0)])
        results.store("q1", [2, 3], [backend.encrypt(2.0), backend.encrypt(3.0)])

        assert results.get("q1").point_ids == [2, 3]
        assert len(results) == 1

    def test_commit_once(self, backend):
        results = ResultStore()
        results.store("q1", [1], [backend.encrypt(1.0)])

        decrypted = results.commit_reveal("q1", [1], [1.0])
        assert decrypted.revealed
        assert results.is_revealed("q1")

        with pytest.raises(AlreadyRevealedError):
            results.commit_reveal("q1", [1], [1.0])
        with pytest.raises(AlreadyRevealedError):
            results.store("q1", [1], [backend.encrypt(1.0)])
        assert results.get_decrypted("q1").revealed

    def test_commit_requires_complete_result(self):
        results = ResultStore()
        results.open("q1")

        with pytest.raises(NotFoundError):
            results.commit_reveal("q1", [], [])

    def test_unknown_query(self):
        results = ResultStore()

        with pytest.raises(NotFoundError):
            results.get("missing")
        with pytest.raises(NotFoundError):
            results.get_decrypted("missing")

    def test_discard_only_incomplete(self, backend):
        results = ResultStore()
        results.open("pending")
        results.store("done", [], [])

        results.discard("pending")
        results.discard("done")

        assert "pending" not in results
        assert "done" in results
