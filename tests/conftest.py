"""Shared fixtures."""
import pytest

from geovault.client.crypto import CryptoClient
from geovault.fhe.simulated import SimulatedBackend
from geovault.server.engine import SpatioTemporalEngine
from geovault.shared.config import GeoVaultSettings


class FakeClock:
    """Deterministic wall clock: every call advances one second."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def make_settings(**overrides) -> GeoVaultSettings:
    return GeoVaultSettings(_env_file=None, **overrides)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return SimulatedBackend()


@pytest.fixture
def make_engine(clock):
    """Factory for engines sharing the fake clock."""
    def _make(**overrides) -> SpatioTemporalEngine:
        return SpatioTemporalEngine(settings=make_settings(**overrides), clock=clock)
    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine(CELL_SIZE=1.0)


@pytest.fixture
def crypto(engine):
    return CryptoClient(engine.backend)
