"""
Rewarded-ad backend.

Receives ad network completion callbacks, credits wallets exactly once and
serves the wallet read path to the game client.
"""
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from datetime import datetime, timezone
import logging
import os

import config  # noqa: F401  (loads .env before anything reads the environment)
from sqlmodel.ext.asyncio.session import AsyncSession

from database import init_db, get_session
from dependencies import get_signature_verifier
from exceptions import RewardsError
from observability.health import run_health_checks
from observability.logging import get_correlation_id
from observability.metrics import metrics_registry
from observability.middleware import ObservabilityMiddleware
from observability.sentry_config import init_sentry, capture_exception
from routes.ads import router as ads_router

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

# Create FastAPI app (must be defined before any @app.* decorators)
app = FastAPI(
    title="Rewarded Ads Backend",
    description="Server-side verification and wallet crediting for rewarded ads",
    version=APP_VERSION,
)

app.add_middleware(ObservabilityMiddleware)

# Configure CORS (the wallet read path is called from the web client)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(ads_router)


class HealthResponse(BaseModel):
    status: str
    version: str


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return {
        "status": "healthy",
        "version": APP_VERSION,
    }


@app.get("/health/ready")
async def readiness_check(session: AsyncSession = Depends(get_session)):
    """
    Readiness check - verifies the database is reachable.

    Returns 503 if any critical dependency is unavailable.
    """
    result = await run_health_checks(session, key_cache=get_signature_verifier().key_cache)
    database_ok = result["checks"]["database"]["status"] == "ok"
    return JSONResponse(status_code=200 if database_ok else 503, content=result)


@app.get("/metrics")
async def metrics():
    return Response(content=generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)


@app.exception_handler(RewardsError)
async def rewards_error_handler(request: Request, exc: RewardsError):
    """Render application errors with their own status code."""
    if exc.status_code >= 500:
        logger.error(f"[ERROR] {exc.__class__.__name__} on {request.url.path}: {exc.message}")
    content = exc.to_dict()
    content["retryable"] = exc.transient
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    - Logs full traceback
    - Returns safe error message to client
    """
    error_id = f"ERR-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{id(exc)}"
    logger.error(
        f"[ERROR {error_id}] Unhandled exception on {request.method} {request.url.path}",
        exc_info=exc,
    )
    capture_exception(exc, tags={"error_id": error_id})

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "error_id": error_id,
            "correlation_id": get_correlation_id(),
            "message": "An unexpected error occurred. Please try again.",
        },
    )


# Startup event
@app.on_event("startup")
async def startup_event():
    """Run on application startup"""
    logger.info(f"Rewarded ads backend starting (environment={config.ENVIRONMENT})")
    init_sentry()
    # Production schema is managed by Alembic; AUTO_CREATE_TABLES is for local runs.
    if os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true":
        await init_db()


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Run on application shutdown"""
    logger.info("Rewarded ads backend shutting down...")
