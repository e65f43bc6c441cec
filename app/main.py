"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from app.config import settings
from app.middleware.error_handler import ErrorHandlerMiddleware
from app.api.dependencies import get_weather_monitor
from app.api.v1.routers import claims, farmers

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_requests}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Starts the weather monitor when enabled and closes the HTTP clients
    on shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Payout config: share_per_metric={settings.payout_share_per_metric}, "
                f"max_transfer_attempts={settings.max_transfer_attempts}")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    monitor = get_weather_monitor()
    if settings.monitor_enabled:
        monitor.start()

    yield

    # Shutdown
    from app.infrastructure.ledger_client import get_ledger_client
    from app.infrastructure.weather_client import get_weather_provider
    logger.info("Shutting down application...")
    await monitor.stop()
    await get_weather_provider().close()
    await get_ledger_client().close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Parametric Crop Insurance Payout API

    This API evaluates weather observations against each farmer's configured
    thresholds and settles parametric insurance claims through an on-chain
    payout relayer.

    ## Features

    - **Threshold Evaluation**: Per-metric breach detection with severity grading
    - **Bounded Payouts**: 25% of coverage per breached metric, capped at full coverage
    - **Idempotent Settlement**: At most one claim per farmer and observation, and
      transfers keyed by claim so retries never pay twice
    - **Failure Handling**: Retryable transfer errors are retried on later passes;
      terminal errors fail the claim with the reason recorded
    - **Weather Monitoring**: Periodic evaluation for every insured farmer
    - **Rate Limiting**: Protects the API from abuse

    ## Claim Lifecycle

    1. A breach creates a claim in `pending`
    2. A confirmed transfer moves it to `paid`
    3. A permanent transfer error, or too many transient ones, moves it to `failed`
    4. An administrator can move a pending claim to `rejected`
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# Add CORS middleware with configurable origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add global error handling middleware
app.add_middleware(ErrorHandlerMiddleware)

# Include routers
app.include_router(farmers.router, prefix="/api/v1")
app.include_router(claims.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.

    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
    }
