"""
Reference HomomorphicBackend adapter.

Simulates a ciphertext coprocessor: callers only ever hold opaque handles,
while the plaintext behind each handle is sealed in a vault the backend owns.
Two vaults are provided:
1. PlainVault - in-memory values, fast, for tests and development
2. PaillierVault - values sealed under LightPHE Paillier encryption
"""
import logging
import math
import secrets
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional, Tuple

from lightphe import LightPHE
from lightphe.models.Tensor import EncryptedTensor

from geovault.fhe.base import HANDLE_SIZE, Ciphertext, HomomorphicBackend
from geovault.shared.errors import InvalidCiphertextError

logger = logging.getLogger(__name__)


class CiphertextVault(ABC):
    """Storage for the values behind ciphertext handles."""

    @abstractmethod
    def put(self, handle: bytes, value: float) -> None:
        pass

    @abstractmethod
    def get(self, handle: bytes) -> float:
        pass

    @abstractmethod
    def discard(self, handle: bytes) -> None:
        pass

    @abstractmethod
    def __contains__(self, handle: bytes) -> bool:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class PlainVault(CiphertextVault):
    """Vault keeping values in memory."""

    def __init__(self):
        self._values: Dict[bytes, float] = {}

    def put(self, handle: bytes, value: float) -> None:
        self._values[handle] = value

    def get(self, handle: bytes) -> float:
        return self._values[handle]

    def discard(self, handle: bytes) -> None:
        self._values.pop(handle, None)

    def __contains__(self, handle: bytes) -> bool:
        return handle in self._values

    def __len__(self) -> int:
        return len(self._values)


class PaillierVault(CiphertextVault):
    """
    Vault sealing every value under Paillier (via LightPHE).

    Magnitudes are encrypted with a +1 shift so zero is never encrypted;
    the sign is kept beside the ciphertext. Values round to ``precision``
    decimal places.
    """

    DEFAULT_KEY_SIZE = 1024  # bits
    DEFAULT_PRECISION = 5    # decimal places

    def __init__(
        self,
        key_size: int = DEFAULT_KEY_SIZE,
        precision: int = DEFAULT_PRECISION,
        keys: Optional[dict] = None,
    ):
        """
        Initialize Paillier vault.

        Args:
            key_size: Paillier key size in bits
            precision: Decimal precision for floating point values
            keys: Pre-existing key pair dict
        """
        self.key_size = key_size
        self.precision = precision
        self._cs = LightPHE(
            algorithm_name="Paillier",
            keys=keys,
            key_size=key_size,
            precision=precision,
        )
        self._entries: Dict[bytes, Tuple[int, Optional[EncryptedTensor]]] = {}

    def put(self, handle: bytes, value: float) -> None:
        sign = -1 if value < 0 else 1
        if math.isinf(value):
            # Saturated values (initial minimum, division by zero) are not encoded
            self._entries[handle] = (sign, None)
            return
        encrypted = self._cs.encrypt([abs(value) + 1.0], silent=True)
        self._entries[handle] = (sign, encrypted)

    def get(self, handle: bytes) -> float:
        sign, encrypted = self._entries[handle]
        if encrypted is None:
            return sign * math.inf
        decrypted = self._cs.decrypt(encrypted)
        # LightPHE returns a list for tensors
        magnitude = decrypted[0] if isinstance(decrypted, list) else decrypted
        return sign * round(float(magnitude) - 1.0, self.precision)

    def discard(self, handle: bytes) -> None:
        self._entries.pop(handle, None)

    def __contains__(self, handle: bytes) -> bool:
        return handle in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class SimulatedBackend(HomomorphicBackend):
    """
    In-process homomorphic backend.

    Thread-safe: tree reductions may evaluate independent pairs on a
    worker pool.
    """

    def __init__(self, vault: Optional[CiphertextVault] = None):
        """
        Initialize backend.

        Args:
            vault: Where sealed values live (default: PlainVault)
        """
        self.vault = vault if vault is not None else PlainVault()
        self._lock = threading.RLock()
        self.op_count = 0

    def _issue(self, value: float) -> Ciphertext:
        handle = secrets.token_bytes(HANDLE_SIZE)
        with self._lock:
            self.vault.put(handle, float(value))
        return Ciphertext(handle)

    def _value(self, ct: Ciphertext) -> float:
        if not isinstance(ct, Ciphertext):
            raise InvalidCiphertextError(f"Expected Ciphertext, got {type(ct).__name__}")
        with self._lock:
            if ct.handle not in self.vault:
                raise InvalidCiphertextError(f"Unknown ciphertext handle {ct.hex()[:16]}")
            return self.vault.get(ct.handle)

    def _apply(self, fn: Callable[..., float], *operands: Ciphertext) -> Ciphertext:
        values = [self._value(ct) for ct in operands]
        with self._lock:
            self.op_count += 1
        return self._issue(fn(*values))

    def encrypt(self, value: float) -> Ciphertext:
        return self._issue(value)

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: x + y, a, b)

    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: x - y, a, b)

    def mul(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: x * y, a, b)

    def div(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        # Division by zero saturates instead of failing
        return self._apply(lambda x, y: x / y if y != 0 else math.inf, a, b)

    def sqrt(self, a: Ciphertext) -> Ciphertext:
        return self._apply(lambda x: math.sqrt(max(x, 0.0)), a)

    def lt(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: float(x < y), a, b)

    def le(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: float(x <= y), a, b)

    def ge(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: float(x >= y), a, b)

    def logical_and(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        return self._apply(lambda x, y: float(bool(x) and bool(y)), a, b)

    def select(self, cond: Ciphertext, if_true: Ciphertext, if_false: Ciphertext) -> Ciphertext:
        return self._apply(lambda c, t, f: t if c else f, cond, if_true, if_false)

    def quantize(self, a: Ciphertext, step: float) -> int:
        return math.floor(self._value(a) / step)

    def is_valid(self, a: Ciphertext) -> bool:
        with self._lock:
            return isinstance(a, Ciphertext) and a.handle in self.vault

    def release(self, handles: Iterable[Ciphertext]) -> None:
        with self._lock:
            for ct in handles:
                self.vault.discard(ct.handle)

    def unseal(self, a: Ciphertext) -> float:
        """
        Decrypt a ciphertext.

        Key-holder operation: only the decryption oracle calls this.
        """
        return self._value(a)
