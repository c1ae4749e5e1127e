"""
Client-side encryption of spatiotemporal points.
"""
from typing import Optional, Tuple, Union

import numpy as np

from geovault.fhe.base import Ciphertext, HomomorphicBackend
from geovault.fhe.simulated import PaillierVault, SimulatedBackend

EncryptedTriple = Tuple[Ciphertext, Ciphertext, Ciphertext]


class CryptoClient:
    """
    Client-side cryptographic operations.

    Responsible for:
    - Encrypting coordinates and timestamps before submission
    - Encrypting points in bulk

    The client holds no decryption capability: plaintext only comes back
    through the reveal protocol.
    """

    def __init__(self, backend: HomomorphicBackend):
        """
        Initialize crypto client.

        Args:
            backend: Homomorphic backend whose public key encrypts inputs
        """
        self.backend = backend

    def encrypt_value(self, value: float) -> Ciphertext:
        return self.backend.encrypt(float(value))

    def encrypt_point(self, lat: float, lon: float, timestamp: float) -> EncryptedTriple:
        """
        Encrypt one point.

        Returns:
            Tuple of (enc_lat, enc_lon, enc_timestamp)
        """
        return (
            self.encrypt_value(lat),
            self.encrypt_value(lon),
            self.encrypt_value(timestamp),
        )

    def encrypt_points(self, points: Union[np.ndarray, list]) -> list:
        """
        Encrypt many points.

        Args:
            points: Rows of (lat, lon, timestamp)

        Returns:
            List of encrypted triples, in row order
        """
        if isinstance(points, np.ndarray):
            points = points.tolist()
        return [self.encrypt_point(*row) for row in points]

    @classmethod
    def with_paillier(
        cls,
        key_size: int = PaillierVault.DEFAULT_KEY_SIZE,
        precision: int = PaillierVault.DEFAULT_PRECISION,
        keys: Optional[dict] = None,
    ) -> "CryptoClient":
        """
        Create a client over a fresh Paillier-sealed simulated backend.

        Args:
            key_size: Paillier key size in bits
            precision: Decimal precision
            keys: Pre-existing key pair dict
        """
        vault = PaillierVault(key_size=key_size, precision=precision, keys=keys)
        return cls(SimulatedBackend(vault=vault))
