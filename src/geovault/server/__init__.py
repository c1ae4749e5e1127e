"""Server-side components for encrypted spatiotemporal queries."""
from geovault.server.store import EncryptedPointStore
from geovault.server.index import BaseSpatialIndex, GridIndex
from geovault.server.compute import QueryProcessor
from geovault.server.results import ResultStore
from geovault.server.reveal import DecryptionOracleProtocol
from geovault.server.engine import EngineStats, SpatioTemporalEngine
from geovault.server.api import app, create_app, run_server

__all__ = [
    "EncryptedPointStore",
    "BaseSpatialIndex",
    "GridIndex",
    "QueryProcessor",
    "ResultStore",
    "DecryptionOracleProtocol",
    "EngineStats",
    "SpatioTemporalEngine",
    "app",
    "create_app",
    "run_server",
]
