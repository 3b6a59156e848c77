"""
PolyLoans Relay API - HTTP front for the proxy wallet relayer.

Provides REST endpoints for:
- Resolving a user's proxy wallet and nonce (GET /get-nonce)
- Relaying owner-signed Safe transactions (POST /relay-tx)
- Portfolio and market lookups (GET /portfolio, GET /market-info)
- Health checks (GET /health)
"""

import uvicorn
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from polyloans_relayer.config import RelayerConfig
from polyloans_relayer.errors import (
    ContractReverted,
    IdentityNotFound,
    RelayError,
    StaleSequence,
    SubmissionFailed,
)
from polyloans_relayer.relayer import PolyLoansRelayer

from . import __version__
from .auth import require_relay_token
from .config import ApiSettings, get_settings
from .models import (
    HealthResponse,
    MarketInfoResponse,
    NonceResponse,
    RelayErrorResponse,
    RelayRequest,
    RelayResponse,
)

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# Relayer service (initialized at startup)
_relayer: PolyLoansRelayer | None = None

ERROR_STATUS = {
    IdentityNotFound: 404,
    StaleSequence: 409,
    ContractReverted: 422,
    SubmissionFailed: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    global _relayer

    settings = get_settings()
    _relayer = PolyLoansRelayer(RelayerConfig(settings=settings))

    logger.info(
        "API started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        evm_rpc=settings.rpc_url,
        chain_id=settings.chain_id,
    )

    yield

    # Cleanup
    if _relayer:
        await _relayer.close()
        _relayer = None

    logger.info("API stopped")


# Create FastAPI app
app = FastAPI(
    title="PolyLoans Relay API",
    description="Gasless relay for PolyLoans proxy wallets",
    version=__version__,
    lifespan=lifespan,
)


# Add CORS middleware
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_relayer() -> PolyLoansRelayer:
    """Dependency returning the running relayer service."""
    if _relayer is None:
        raise HTTPException(status_code=503, detail="Relayer not initialized")
    return _relayer


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Render typed relay failures with a stable shape."""
    status_code = next(
        (code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)),
        500,
    )
    body = RelayErrorResponse(
        error=exc.code,
        detail=exc.message,
        retry_safe=exc.retry_safe,
        tx_hash=exc.tx_hash,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


# ============================================================================
# Health Check
# ============================================================================


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "PolyLoans Relayer V2 Active"


@app.get("/health", response_model=HealthResponse)
async def health_check(
    settings: ApiSettings = Depends(get_settings),
    relayer: PolyLoansRelayer = Depends(get_relayer),
) -> HealthResponse:
    """
    Check API health and EVM connectivity.
    """
    evm_ok = await relayer.chain.check_connectivity()
    relayer_address = relayer.chain.account.address if relayer.chain.account else None

    return HealthResponse(
        status="ok" if (evm_ok and relayer_address) else "degraded",
        version=__version__,
        evm_rpc=evm_ok,
        chain_id=settings.chain_id,
        relayer=relayer_address,
        contracts={
            "collateral_registry": settings.collateral_registry,
            "settlement_asset": settings.settlement_asset,
        },
    )


# ============================================================================
# Nonce
# ============================================================================


@app.get("/get-nonce", response_model=NonceResponse)
async def get_nonce(
    user: str = Query(..., description="End-user address"),
    relayer: PolyLoansRelayer = Depends(get_relayer),
) -> NonceResponse:
    """
    Resolve the user's proxy wallet and return the nonce to sign over.

    Returns 404 when no proxy wallet is known for the user and 503 when the
    nonce cannot be read.
    """
    result = await relayer.get_nonce(user)
    return NonceResponse(proxy=result.proxy, nonce=str(result.nonce))


# ============================================================================
# Relay
# ============================================================================


@app.post(
    "/relay-tx",
    response_model=RelayResponse,
    responses={
        404: {"model": RelayErrorResponse},
        409: {"model": RelayErrorResponse},
        422: {"model": RelayErrorResponse},
        503: {"model": RelayErrorResponse},
    },
    dependencies=[Depends(require_relay_token)],
)
async def relay_tx(
    request: RelayRequest,
    relayer: PolyLoansRelayer = Depends(get_relayer),
) -> RelayResponse:
    """
    Relay an owner-signed SafeTx through the proxy wallet.

    The call data and signature are forwarded unchanged; the relayer only
    pays gas. Failures come back typed: stale_sequence means re-fetch the
    nonce and re-sign, submission_failed may be retried as-is.
    """
    logger.info("Relaying transaction", proxy=request.proxy, to=request.to)

    try:
        receipt = await relayer.relay(
            proxy=request.proxy,
            target=request.to,
            payload=request.data,
            signature=request.signature,
            expected_sequence=request.nonce,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info("Relay confirmed", proxy=receipt.wallet, tx_hash=receipt.tx_hash)

    return RelayResponse(
        tx_hash=receipt.tx_hash,
        proxy=receipt.wallet,
        nonce=receipt.sequence,
        block_number=receipt.block_number,
        gas_used=receipt.gas_used,
    )


# ============================================================================
# Read views
# ============================================================================


@app.get("/portfolio")
async def portfolio(
    user: str = Query(..., description="End-user address"),
    relayer: PolyLoansRelayer = Depends(get_relayer),
) -> list[dict[str, Any]]:
    """
    Open positions with a best-effort live price (livePrice "0" on failure).
    """
    return await relayer.portfolio(user)


@app.get("/market-info", response_model=MarketInfoResponse)
async def market_info(
    token_id: str = Query(..., alias="tokenId", description="Outcome token id"),
    relayer: PolyLoansRelayer = Depends(get_relayer),
) -> MarketInfoResponse:
    """
    Market title and slug for an outcome token, or the Unknown placeholder.
    """
    descriptor = await relayer.market_info(token_id)
    return MarketInfoResponse(title=descriptor.title, slug=descriptor.slug)


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "polyloans_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
