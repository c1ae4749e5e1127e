"""Homomorphic arithmetic capability: interface, reference adapter and oracle."""
from geovault.fhe.base import Ciphertext, HomomorphicBackend
from geovault.fhe.simulated import (
    CiphertextVault,
    PaillierVault,
    PlainVault,
    SimulatedBackend,
)
from geovault.fhe.oracle import DecryptionOracle, OracleResponse, SimulatedOracle

__all__ = [
    "Ciphertext",
    "HomomorphicBackend",
    "CiphertextVault",
    "PaillierVault",
    "PlainVault",
    "SimulatedBackend",
    "DecryptionOracle",
    "OracleResponse",
    "SimulatedOracle",
]
