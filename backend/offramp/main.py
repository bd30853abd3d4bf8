"""Main FastAPI application."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offramp.api import offramp, payouts, swaps, webhooks
from offramp.config import settings
from offramp.core.errors import OffRampError, PollTimeout
from offramp.core.polling import PollRegistry
from offramp.database import AsyncSessionLocal, init_models
from offramp.services.chain_service import EvmSettlementChain
from offramp.services.gasless_service import GaslessService, TypedDataSigner
from offramp.services.layerswap_service import LayerSwapService
from offramp.services.orchestrator import OffRampOrchestrator
from offramp.services.paycrest_service import PaycrestService
from offramp.services.settlement_executor import SettlementExecutor
from offramp.services.store import SagaStore
from offramp.services.webhook_reconciler import WebhookReconciler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Off-Ramp API",
    version="1.0.0",
    description="Cash out bridged stablecoins to bank accounts through a settlement saga"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    offramp.router,
    prefix=f"{settings.API_V1_PREFIX}/offramp",
    tags=["offramp"]
)
app.include_router(
    webhooks.router,
    prefix=f"{settings.API_V1_PREFIX}/webhooks",
    tags=["webhooks"]
)
app.include_router(
    swaps.router,
    prefix=f"{settings.API_V1_PREFIX}/swaps",
    tags=["swaps"]
)
app.include_router(
    payouts.router,
    prefix=f"{settings.API_V1_PREFIX}/payouts",
    tags=["payouts"]
)


def attach_runtime(
    target: FastAPI,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    signer: Optional[TypedDataSigner] = None
) -> None:
    """
    Build the process-wide services and hang them on ``target.state``.

    The settlement wallet is created once here and shared by every saga
    through the executor, which serializes its transfers.
    """
    store = SagaStore(session_factory)
    settlement_chain = EvmSettlementChain()
    layerswap = LayerSwapService()
    paycrest = PaycrestService()
    gasless = GaslessService(signer=signer)
    reconciler = WebhookReconciler(store)
    executor = SettlementExecutor(settlement_chain, store)

    target.state.store = store
    target.state.settlement_chain = settlement_chain
    target.state.layerswap = layerswap
    target.state.paycrest = paycrest
    target.state.gasless = gasless
    target.state.reconciler = reconciler
    target.state.orchestrator = OffRampOrchestrator(
        layerswap=layerswap,
        paycrest=paycrest,
        gasless=gasless,
        executor=executor,
        reconciler=reconciler,
        store=store,
        polls=PollRegistry(),
    )


@app.on_event("startup")
async def startup():
    """Application startup tasks."""
    await init_models()
    attach_runtime(app)
    logger.info(f"Off-Ramp API starting ({settings.ENVIRONMENT})")
    if not settings.PAYCREST_WEBHOOK_SECRET:
        logger.warning("PAYCREST_WEBHOOK_SECRET not set - every webhook will be rejected")


@app.on_event("shutdown")
async def shutdown():
    """Application shutdown tasks."""
    for name in ("layerswap", "paycrest", "gasless"):
        client = getattr(app.state, name, None)
        if client is not None:
            await client.aclose()
    logger.info("Off-Ramp API shutting down")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Off-Ramp API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
    }


@app.exception_handler(OffRampError)
async def offramp_exception_handler(request: Request, exc: OffRampError):
    """Render saga and provider errors with their step and context."""
    content = exc.to_dict()
    if isinstance(exc, PollTimeout):
        content = {"status": "pending", **content}
    return JSONResponse(status_code=exc.http_status, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Invalid request bodies and parameters are plain 400s."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "path", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message, "code": "VALIDATION_ERROR"}
    )


# Global exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail}
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Anything that escaped the error taxonomy is a JSON 500."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR"}
    )
