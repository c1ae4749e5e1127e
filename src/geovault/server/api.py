"""
FastAPI server for encrypted spatiotemporal queries.

Endpoints:
- GET  /health - Availability check
- GET  /stats - Engine counters
- POST /points - Submit an encrypted point
- GET  /points/{id} - Fetch an encrypted point
- POST /queries/range - Encrypted range query
- POST /queries/nearest - Encrypted nearest-neighbor query
- GET  /queries/{hash} - Encrypted query result
- POST /queries/{hash}/reveal - Ask the oracle to decrypt a result
- GET  /queries/{hash}/decrypted - Revealed result
- POST /oracle/callback - Oracle delivers cleartext + proof (oracle only)
- POST /oracle/deliver - Flush the simulated oracle (non-production only)

Ciphertexts travel as hex strings, byte payloads as base64.
"""
import binascii
import logging
import secrets
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from geovault import __version__
from geovault.fhe.base import Ciphertext
from geovault.server.engine import SpatioTemporalEngine
from geovault.shared.codec import decode_b64
from geovault.shared.config import GeoVaultSettings, get_settings
from geovault.shared.errors import (
    AlreadyRevealedError,
    DeliveryError,
    GeoVaultError,
    InvalidCiphertextError,
    InvalidRequestError,
    LengthMismatchError,
    NotFoundError,
    ProofVerificationError,
    QueryIncompleteError,
)
from geovault.shared.logging import configure_logging

logger = logging.getLogger(__name__)


# Pydantic models for API
class SubmitPointRequest(BaseModel):
    """Encrypted point submission."""
    enc_lat: str = Field(..., description="Hex ciphertext handle")
    enc_lon: str = Field(..., description="Hex ciphertext handle")
    enc_timestamp: str = Field(..., description="Hex ciphertext handle")
    owner: Optional[str] = None


class SubmitPointResponse(BaseModel):
    id: int


class PointResponse(BaseModel):
    """Encrypted point as stored."""
    id: int
    enc_lat: str
    enc_lon: str
    enc_timestamp: str
    submitted_at: float
    owner: Optional[str] = None


class RangeQueryRequest(BaseModel):
    """Range query parameters. Time bounds are inclusive."""
    center_lat: float
    center_lon: float
    radius: float
    start_time: float
    end_time: float


class NearestQueryRequest(BaseModel):
    target_lat: float
    target_lon: float


class QueryHashResponse(BaseModel):
    query_hash: str
    encrypted_id: Optional[str] = Field(default=None, description="Nearest-neighbor queries only")


class QueryResultResponse(BaseModel):
    """Encrypted query result."""
    query_hash: str
    kind: str
    point_ids: List[int]
    encrypted_distances: List[str]
    encrypted_point_ids: List[str]
    complete: bool
    reveal_state: str


class RevealResponse(BaseModel):
    request_id: str


class DecryptedResultResponse(BaseModel):
    query_hash: str
    point_ids: List[int]
    distances: List[float]
    revealed: bool


class OracleCallbackRequest(BaseModel):
    """Oracle answer to a reveal request."""
    request_id: str
    cleartext_b64: str = Field(..., description="Base64-encoded packed float64 values")
    proof_b64: str = Field(..., description="Base64-encoded oracle proof")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    num_points: int
    leaks_cell_membership: bool


# Server state
class ServerState:
    """Server state container."""
    def __init__(self):
        self.engine: Optional[SpatioTemporalEngine] = None
        self.settings: Optional[GeoVaultSettings] = None


state = ServerState()


ERROR_STATUS = {
    NotFoundError: 404,
    LengthMismatchError: 422,
    QueryIncompleteError: 409,
    AlreadyRevealedError: 409,
    InvalidRequestError: 400,
    ProofVerificationError: 403,
    InvalidCiphertextError: 400,
    DeliveryError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize server on startup."""
    if state.settings is None:
        state.settings = get_settings()
    configure_logging(state.settings)
    if state.engine is None:
        state.engine = SpatioTemporalEngine(settings=state.settings)
    logger.info("Server ready: %d points", len(state.engine.store))
    yield
    logger.info("Server shutting down")


app = FastAPI(
    title="GeoVault",
    description="Encrypted spatiotemporal query API",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(GeoVaultError)
async def geovault_error_handler(request: Request, exc: GeoVaultError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def get_engine() -> SpatioTemporalEngine:
    if state.engine is None:
        raise HTTPException(status_code=500, detail="Server not initialized")
    return state.engine


def parse_ciphertext(value: str) -> Ciphertext:
    """Parse a hex ciphertext handle from a request."""
    try:
        return Ciphertext.from_hex(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Malformed ciphertext handle: {value[:16]}")


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    engine = get_engine()
    stats = engine.stats()
    return HealthResponse(
        status="healthy",
        version=__version__,
        num_points=stats.num_points,
        leaks_cell_membership=stats.leaks_cell_membership,
    )


@app.get("/stats")
async def engine_stats():
    return get_engine().stats().to_dict()


@app.post("/points", response_model=SubmitPointResponse)
async def submit_point(request: SubmitPointRequest):
    """Submit an encrypted point."""
    engine = get_engine()
    point_id = engine.submit_point(
        parse_ciphertext(request.enc_lat),
        parse_ciphertext(request.enc_lon),
        parse_ciphertext(request.enc_timestamp),
        owner=request.owner,
    )
    return SubmitPointResponse(id=point_id)


@app.get("/points/{point_id}", response_model=PointResponse)
async def get_point(point_id: int):
    point = get_engine().get_point(point_id)
    return PointResponse(
        id=point.id,
        enc_lat=point.enc_lat.hex(),
        enc_lon=point.enc_lon.hex(),
        enc_timestamp=point.enc_timestamp.hex(),
        submitted_at=point.submitted_at,
        owner=point.owner,
    )


@app.post("/queries/range", response_model=QueryHashResponse)
async def range_query(request: RangeQueryRequest):
    """Evaluate an encrypted range query. The result stays encrypted."""
    query_hash = get_engine().range_query(
        request.center_lat,
        request.center_lon,
        request.radius,
        request.start_time,
        request.end_time,
    )
    return QueryHashResponse(query_hash=query_hash)


@app.post("/queries/nearest", response_model=QueryHashResponse)
async def nearest_query(request: NearestQueryRequest):
    """Evaluate an encrypted nearest-neighbor query."""
    query_hash, encrypted_id = get_engine().nearest_neighbor(request.target_lat, request.target_lon)
    return QueryHashResponse(query_hash=query_hash, encrypted_id=encrypted_id.hex())


@app.get("/queries/{query_hash}", response_model=QueryResultResponse)
async def get_query_result(query_hash: str):
    engine = get_engine()
    with engine.transaction():
        result = engine.get_result(query_hash)
        reveal_state = engine.reveal_state(query_hash)
    return QueryResultResponse(
        query_hash=result.query_hash,
        kind=result.kind.value,
        point_ids=result.point_ids,
        encrypted_distances=[ct.hex() for ct in result.encrypted_distances],
        encrypted_point_ids=[ct.hex() for ct in result.encrypted_point_ids],
        complete=result.complete,
        reveal_state=reveal_state.value,
    )


@app.post("/queries/{query_hash}/reveal", response_model=RevealResponse)
async def request_reveal(query_hash: str):
    """Send the encrypted result to the decryption oracle."""
    return RevealResponse(request_id=get_engine().request_reveal(query_hash))


@app.get("/queries/{query_hash}/decrypted", response_model=DecryptedResultResponse)
async def get_decrypted_result(query_hash: str):
    decrypted = get_engine().get_decrypted(query_hash)
    return DecryptedResultResponse(
        query_hash=decrypted.query_hash,
        point_ids=decrypted.point_ids,
        distances=decrypted.distances,
        revealed=decrypted.revealed,
    )


@app.post("/oracle/callback", response_model=DecryptedResultResponse)
async def oracle_callback(
    request: OracleCallbackRequest,
    x_oracle_token: Optional[str] = Header(default=None),
):
    """
    Oracle callback surface.

    Only the trusted oracle identity, holding GEO_ORACLE_TOKEN, may call it.
    """
    settings = state.settings or get_settings()
    if settings.ORACLE_TOKEN is None:
        raise HTTPException(status_code=503, detail="Oracle callback is not configured")
    if x_oracle_token is None or not secrets.compare_digest(x_oracle_token, settings.ORACLE_TOKEN):
        raise HTTPException(status_code=401, detail="Invalid oracle token")

    try:
        cleartext = decode_b64(request.cleartext_b64)
        proof = decode_b64(request.proof_b64)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Failed to decode payload: {e}")

    decrypted = get_engine().on_reveal_callback(request.request_id, cleartext, proof)
    return DecryptedResultResponse(
        query_hash=decrypted.query_hash,
        point_ids=decrypted.point_ids,
        distances=decrypted.distances,
        revealed=decrypted.revealed,
    )


@app.post("/oracle/deliver")
async def deliver_oracle_responses():
    """Let the simulated oracle answer every queued request."""
    settings = state.settings or get_settings()
    if settings.ENVIRONMENT == "production":
        raise HTTPException(status_code=404, detail="Not available in production")
    return {"delivered": get_engine().deliver_oracle_responses()}


def create_app(
    engine: Optional[SpatioTemporalEngine] = None,
    settings: Optional[GeoVaultSettings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI app.

    For programmatic use in tests and demos.
    """
    state.settings = settings or (engine.settings if engine is not None else get_settings())
    state.engine = engine or SpatioTemporalEngine(settings=state.settings)
    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the server directly."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=host or settings.HOST, port=port or settings.PORT)


if __name__ == "__main__":
    run_server()
