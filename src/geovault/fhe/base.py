"""
Homomorphic arithmetic interface.

The engine never touches plaintext. Everything it computes goes through a
HomomorphicBackend, which hands out opaque Ciphertext handles and combines
them. Concrete encryption schemes live behind adapters.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable


HANDLE_SIZE = 32  # bytes


@dataclass(frozen=True)
class Ciphertext:
    """
    Opaque reference to an encrypted value.

    The handle carries no information about the plaintext; only the backend
    that issued it can operate on it.
    """
    handle: bytes

    def hex(self) -> str:
        return self.handle.hex()

    @classmethod
    def from_hex(cls, value: str) -> "Ciphertext":
        return cls(bytes.fromhex(value))

    def __repr__(self) -> str:
        return f"Ciphertext({self.handle[:4].hex()}...)"


class HomomorphicBackend(ABC):
    """
    Abstract homomorphic arithmetic capability.

    Booleans are ciphertexts of 1 (true) and 0 (false). Every operation
    returns a fresh ciphertext; inputs are never modified.
    """

    @abstractmethod
    def encrypt(self, value: float) -> Ciphertext:
        """Encrypt a plaintext under the backend's public key."""
        pass

    @abstractmethod
    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        pass

    @abstractmethod
    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        pass

    @abstractmethod
    def mul(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        pass

    @abstractmethod
    def div(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        pass

    @abstractmethod
    def sqrt(self, a: Ciphertext) -> Ciphertext:
        pass

    @abstractmethod
    def lt(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Encrypted ``a < b``."""
        pass

    @abstractmethod
    def le(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Encrypted ``a <= b``."""
        pass

    @abstractmethod
    def ge(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Encrypted ``a >= b``."""
        pass

    @abstractmethod
    def logical_and(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        pass

    @abstractmethod
    def select(self, cond: Ciphertext, if_true: Ciphertext, if_false: Ciphertext) -> Ciphertext:
        """Encrypted ternary: ``if_true if cond else if_false``."""
        pass

    @abstractmethod
    def quantize(self, a: Ciphertext, step: float) -> int:
        """
        Return ``floor(plaintext / step)`` in the clear.

        This leaks coarse magnitude information and exists only for spatial
        bucketing. Callers that cannot accept the leak must not use it.
        """
        pass

    @abstractmethod
    def is_valid(self, a: Ciphertext) -> bool:
        """Whether the handle was issued by this backend."""
        pass

    @abstractmethod
    def release(self, handles: Iterable[Ciphertext]) -> None:
        """
        Free ciphertexts the caller no longer needs.

        Released handles become invalid; unknown handles are ignored.
        """
        pass

    def square(self, a: Ciphertext) -> Ciphertext:
        return self.mul(a, a)
