"""
GeoVault exception hierarchy.

All engine errors inherit from GeoVaultError and are surfaced to the caller.
Nothing in the core retries.
"""


class GeoVaultError(Exception):
    """Base exception for all GeoVault errors."""
    pass


class NotFoundError(GeoVaultError):
    """Raised when a point id was never assigned."""
    pass


class LengthMismatchError(GeoVaultError):
    """Raised when point ids and encrypted distances differ in length."""
    pass


class QueryIncompleteError(GeoVaultError):
    """Raised when a reveal is requested before the result is stored."""
    pass


class AlreadyRevealedError(GeoVaultError):
    """Raised on a second reveal of the same query."""
    pass


class InvalidRequestError(GeoVaultError):
    """Raised when an oracle callback names an unknown or consumed request."""
    pass


class ProofVerificationError(GeoVaultError):
    """Raised when an oracle proof does not verify. No plaintext is written."""
    pass


class InvalidCiphertextError(GeoVaultError):
    """Raised when a ciphertext handle was not issued by the backend."""
    pass


class ConfigurationError(GeoVaultError):
    """Raised when the engine is misconfigured."""
    pass


class DeliveryError(GeoVaultError):
    """
    Raised after a delivery round in which some callbacks were rejected.

    Every other queued response was still delivered.
    """

    def __init__(self, failures, delivered: int):
        self.failures = failures
        self.delivered = delivered
        summary = ", ".join(f"{rid}: {type(err).__name__}" for rid, err in failures)
        super().__init__(f"{len(failures)} oracle callback(s) rejected ({summary})")
