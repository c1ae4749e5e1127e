"""Tests for the simulated homomorphic backend and oracle."""
import math

import pytest

from geovault.fhe.base import Ciphertext
from geovault.fhe.oracle import SimulatedOracle, proof_message
from geovault.fhe.simulated import PaillierVault, SimulatedBackend
from geovault.shared.codec import decode_cleartext, encode_cleartext
from geovault.shared.errors import InvalidCiphertextError


class TestSimulatedBackend:
    """Test homomorphic operations on opaque handles."""

    def test_arithmetic(self, backend):
        """Test add/sub/mul/div/sqrt results."""
        a = backend.encrypt(9.0)
        b = backend.encrypt(3.0)

        assert backend.unseal(backend.add(a, b)) == 12.0
        assert backend.unseal(backend.sub(a, b)) == 6.0
        assert backend.unseal(backend.mul(a, b)) == 27.0
        assert backend.unseal(backend.div(a, b)) == 3.0
        assert backend.unseal(backend.sqrt(a)) == 3.0
        assert backend.unseal(backend.square(b)) == 9.0

    def test_division_by_zero_saturates(self, backend):
        result = backend.div(backend.encrypt(1.0), backend.encrypt(0.0))
        assert math.isinf(backend.unseal(result))

    def test_comparisons(self, backend):
        """Test encrypted comparisons return encrypted booleans."""
        one = backend.encrypt(1.0)
        two = backend.encrypt(2.0)
        other_two = backend.encrypt(2.0)

        assert backend.unseal(backend.lt(one, two)) == 1.0
        assert backend.unseal(backend.lt(two, other_two)) == 0.0
        assert backend.unseal(backend.le(two, other_two)) == 1.0
        assert backend.unseal(backend.ge(one, two)) == 0.0
        assert backend.unseal(backend.ge(two, other_two)) == 1.0

    def test_logical_and_and_select(self, backend):
        true = backend.encrypt(1.0)
        false = backend.encrypt(0.0)
        a = backend.encrypt(10.0)
        b = backend.encrypt(20.0)

        assert backend.unseal(backend.logical_and(true, true)) == 1.0
        assert backend.unseal(backend.logical_and(true, false)) == 0.0
        assert backend.unseal(backend.select(true, a, b)) == 10.0
        assert backend.unseal(backend.select(false, a, b)) == 20.0

    def test_handles_are_opaque(self, backend):
        """Equal plaintexts encrypt to distinct handles."""
        a = backend.encrypt(5.0)
        b = backend.encrypt(5.0)
        assert a != b
        assert len(a.handle) == 32

    def test_operations_do_not_mutate_inputs(self, backend):
        a = backend.encrypt(2.0)
        backend.add(a, a)
        assert backend.unseal(a) == 2.0

    def test_unknown_handle_rejected(self, backend):
        foreign = SimulatedBackend().encrypt(1.0)
        assert not backend.is_valid(foreign)
        with pytest.raises(InvalidCiphertextError):
            backend.add(foreign, backend.encrypt(1.0))

    def test_quantize(self, backend):
        assert backend.quantize(backend.encrypt(2.5), 1.0) == 2
        assert backend.quantize(backend.encrypt(-0.5), 1.0) == -1
        assert backend.quantize(backend.encrypt(10.0), 5.0) == 2

    def test_ciphertext_hex_round_trip(self, backend):
        ct = backend.encrypt(1.0)
        assert Ciphertext.from_hex(ct.hex()) == ct

    def test_op_count(self, backend):
        a = backend.encrypt(1.0)
        backend.add(a, a)
        backend.lt(a, a)
        assert backend.op_count == 2

    def test_release(self, backend):
        a = backend.encrypt(1.0)
        b = backend.encrypt(2.0)

        backend.release([a])
        assert not backend.is_valid(a)
        assert backend.is_valid(b)
        assert len(backend.vault) == 1
        with pytest.raises(InvalidCiphertextError):
            backend.add(a, b)

        backend.release([a])
        assert len(backend.vault) == 1

    def test_repr_is_truncated(self, backend):
        ct = backend.encrypt(1.0)
        assert repr(ct) == f"Ciphertext({ct.handle[:4].hex()}...)"


class TestPaillierVault:
    """Test the Paillier-sealed vault (LightPHE)."""

    def test_values_survive_sealing(self):
        """Test values, including negatives and zero, decrypt correctly."""
        backend = SimulatedBackend(vault=PaillierVault(key_size=1024, precision=5))

        for value in [0.0, 0.5, 12.25, -33.75, 1_700_000_000.0]:
            assert abs(backend.unseal(backend.encrypt(value)) - value) < 0.01

    def test_arithmetic_under_paillier(self):
        backend = SimulatedBackend(vault=PaillierVault(key_size=1024, precision=5))

        a = backend.encrypt(3.0)
        b = backend.encrypt(4.0)
        dist = backend.sqrt(backend.add(backend.square(a), backend.square(b)))

        assert abs(backend.unseal(dist) - 5.0) < 0.01
        assert backend.unseal(backend.lt(a, b)) == 1.0


class TestSimulatedOracle:
    """Test oracle requests, responses and proofs."""

    def test_request_and_respond(self, backend):
        oracle = SimulatedOracle(backend)
        batch = [backend.encrypt(1.5), backend.encrypt(-2.0)]

        request_id = oracle.request_decryption(batch)
        assert oracle.pending == [request_id]

        (response,) = oracle.respond()
        assert response.request_id == request_id
        assert decode_cleartext(response.cleartext, 2) == [1.5, -2.0]
        assert oracle.verify_proof(batch, response.cleartext, response.proof)
        assert oracle.pending == []

    def test_request_ids_are_fresh(self, backend):
        oracle = SimulatedOracle(backend)
        batch = [backend.encrypt(1.0)]
        assert oracle.request_decryption(batch) != oracle.request_decryption(batch)

    def test_tampered_cleartext_fails_verification(self, backend):
        oracle = SimulatedOracle(backend)
        batch = [backend.encrypt(1.0)]
        oracle.request_decryption(batch)
        (response,) = oracle.respond()

        assert not oracle.verify_proof(batch, encode_cleartext([2.0]), response.proof)

    def test_proof_bound_to_batch(self, backend):
        oracle = SimulatedOracle(backend)
        batch = [backend.encrypt(1.0)]
        other_batch = [backend.encrypt(1.0)]
        oracle.request_decryption(batch)
        (response,) = oracle.respond()

        assert proof_message(batch, response.cleartext) != proof_message(other_batch, response.cleartext)
        assert not oracle.verify_proof(other_batch, response.cleartext, response.proof)

    def test_foreign_oracle_proof_rejected(self, backend):
        oracle = SimulatedOracle(backend)
        impostor = SimulatedOracle(backend)
        batch = [backend.encrypt(1.0)]
        impostor.request_decryption(batch)
        (response,) = impostor.respond()

        assert not oracle.verify_proof(batch, response.cleartext, response.proof)

    def test_deliver_and_drop(self, backend):
        oracle = SimulatedOracle(backend)
        kept = oracle.request_decryption([backend.encrypt(1.0)])
        dropped = oracle.request_decryption([backend.encrypt(2.0)])
        oracle.drop(dropped)

        received = []
        delivered = oracle.deliver(lambda rid, clear, proof: received.append(rid))

        assert delivered == 1
        assert received == [kept]

    def test_respond_single_request(self, backend):
        oracle = SimulatedOracle(backend)
        first = oracle.request_decryption([backend.encrypt(1.0)])
        second = oracle.request_decryption([backend.encrypt(2.0)])

        responses = oracle.respond(second)
        assert [r.request_id for r in responses] == [second]
        assert oracle.pending == [first]
        assert oracle.respond("missing") == []

    def test_public_key_bytes(self, backend):
        assert len(SimulatedOracle(backend).public_key_bytes) == 32


class TestCleartextCodec:
    """Test the oracle cleartext format."""

    def test_wrong_length_rejected(self):
        data = encode_cleartext([1.0, 2.0])
        with pytest.raises(ValueError, match="Expected 3 values"):
            decode_cleartext(data, 3)

    def test_empty(self):
        assert decode_cleartext(encode_cleartext([]), 0) == []
