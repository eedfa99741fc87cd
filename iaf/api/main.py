"""
IAF Platform API

Main entrypoint. Sets up FastAPI with:
  - CORS for dashboard and agent access
  - Rate limiting (slowapi)
  - Prometheus metrics (/metrics)
  - Health check (/health) with Redis status, readiness (/ready)
  - Application routes  (/api/v1/namespaces/{ns}/applications)
  - Managed service routes (/api/v1/namespaces/{ns}/services)

Run with:  uvicorn iaf.api.main:app
"""
import logging
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from iaf import __version__
from iaf.api import metrics
from iaf.api.ratelimit import limiter
from iaf.api.routers.applications import router as applications_router
from iaf.api.routers.services import router as services_router
from iaf.api.services.kubernetes_service import get_cluster_store
from iaf.config import settings
from iaf.events import get_redis
from iaf.models import now

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("iaf-api")


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("IAF Platform API starting...")
    metrics.init_metrics()
    yield
    logger.info("IAF Platform API shutting down...")


# --- FastAPI app ---
app = FastAPI(
    title="IAF Platform API",
    description="Applications, managed services and bindings on the IAF Kubernetes operator",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",")],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Routers ---
app.include_router(applications_router, prefix="/api")
app.include_router(services_router, prefix="/api")


# --- Health check ---
@app.get("/health")
async def health():
    """Health check with Redis connectivity status."""
    redis_status = "disabled"
    r = get_redis()
    if r:
        try:
            r.ping()
            redis_status = "connected"
        except redis.RedisError:
            redis_status = "disconnected"

    return {
        "status": "healthy",
        "timestamp": now(),
        "redis": redis_status,
        "version": __version__,
    }


@app.get("/ready")
async def ready():
    """Readiness check; the API holds no state that needs warming up."""
    return {"status": "ready"}


# --- Prometheus metrics endpoint ---
@app.get("/metrics", response_class=PlainTextResponse)
async def metrics_endpoint(store=Depends(get_cluster_store)):
    """Expose Prometheus metrics."""
    metrics.update_gauges(store)
    return PlainTextResponse(
        content=generate_latest().decode("utf-8"),
        media_type=CONTENT_TYPE_LATEST,
    )


# --- Global exception handler ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    metrics.record_failure()
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# --- Entry point ---
def run():
    uvicorn.run(
        "iaf.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info",
        reload=False,
    )


if __name__ == "__main__":
    run()
