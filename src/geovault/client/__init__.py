"""Client-side components for encrypted spatiotemporal queries."""
from geovault.client.crypto import CryptoClient
from geovault.client.search import SearchClient

__all__ = ["CryptoClient", "SearchClient"]
