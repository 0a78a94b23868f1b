"""
Launch Tracker - FastAPI Application

Main entry point for the launch-date prediction tracker.

Architecture:
- Request → Capacity Monitor (counts, derives DegradationState)
- Submission → Input Validator → Identity Resolver → Weight Calculator → storage
- Stats → storage → Weighted Aggregator → status classifier (cache-fronted)
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .database import build_engine, build_session_factory, init_db
from .errors import ErrorKind, TrackerError, status_for
from .logging_setup import configure_logging
from .routers import (
    degradation_router,
    predict_router,
    privacy_router,
    rules_router,
    stats_router,
)
from .services.bot_verification import BotVerifier
from .services.cache import TimedCache
from .services.capacity import CapacityMonitor, Clock, CounterStore, SQLCounterStore, utc_now
from .services.identity import NetworkHasher
from .services.rate_limit import RateLimiter
from .services.server_logs import ServerLogService
from .services.statistics import StatisticsService
from .services.validation import SubmissionValidator

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

# Paths that never count against the daily budget.
UNCOUNTED_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")


def create_app(
    settings: Optional[Settings] = None,
    counter_store: Optional[CounterStore] = None,
    clock: Optional[Clock] = None,
    bot_verifier: Optional[BotVerifier] = None,
    rate_limit_clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """
    Build the application. Collaborators default to their production
    implementations; tests pass fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load configuration and wire services on startup."""
        resolved = settings or load_settings()
        configure_logging(resolved.log_level)

        engine = build_engine(resolved.database_url)
        init_db(engine)
        session_factory = build_session_factory(engine)

        app.state.settings = resolved
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.capacity_monitor = CapacityMonitor(
            counter_store or SQLCounterStore(session_factory),
            daily_budget=resolved.daily_request_budget,
            thresholds=resolved.capacity_thresholds,
            cache_ttl=resolved.stats_cache_ttl,
            cache_ttl_extended=resolved.stats_cache_ttl_extended,
            clock=clock or utc_now,
        )
        app.state.hasher = NetworkHasher(resolved.salt, resolved.salt_version)
        app.state.validator = SubmissionValidator(
            resolved.min_prediction_date, resolved.max_prediction_date
        )
        app.state.bot_verifier = bot_verifier or BotVerifier(resolved.turnstile_secret_key)
        app.state.rate_limiter = RateLimiter(
            resolved.rate_limits, clock=rate_limit_clock or time.time
        )
        app.state.statistics = StatisticsService(
            reference_date=resolved.reference_date,
            min_sample_count=resolved.min_sample_count,
            cache=TimedCache(default_ttl=resolved.stats_cache_ttl),
        )

        logger.info(
            f"Launch Tracker started: reference_date={resolved.reference_date} "
            f"budget={resolved.daily_request_budget} hash={app.state.hasher.algorithm.name}"
        )
        yield
        engine.dispose()

    app = FastAPI(
        lifespan=lifespan,
        title="Launch Tracker",
        description="""
    Launch Tracker - Community Release-Date Predictions

    Collects one predicted date per visitor and serves a weighted community
    estimate that resists outliers and demand spikes.

    ## Pipeline
    1. **Capacity Monitor**: every request updates today's counter
    2. **Input Validator**: date, token and metadata rules
    3. **Identity Resolver**: client token + salted network hash
    4. **Weighted Aggregator**: weighted median, status bucket
    """,
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def count_request(request: Request, call_next):
        """Count the request against today's budget before routing it."""
        if request.url.path not in UNCOUNTED_PATHS and request.method != "OPTIONS":
            request.state.degradation = await run_in_threadpool(
                request.app.state.capacity_monitor.record_request
            )
        return await call_next(request)

    register_exception_handlers(app)

    app.include_router(predict_router)
    app.include_router(stats_router)
    app.include_router(degradation_router)
    app.include_router(privacy_router)
    app.include_router(rules_router)

    @app.get("/")
    async def root():
        """Root endpoint - API information."""
        return {
            "name": "Launch Tracker",
            "version": VERSION,
            "docs": "/docs",
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": VERSION}

    return app


# =============================================================================
# ERROR HANDLING
# =============================================================================

def _record_error(request: Request, status_code: int, message: str, details: Optional[str] = None) -> None:
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        return
    db = session_factory()
    try:
        ServerLogService(db).record(
            level="ERROR" if status_code >= 500 else "WARN",
            message=message,
            request_path=request.url.path,
            request_method=request.method,
            status_code=status_code,
            ip_hash=getattr(request.state, "ip_hash", None),
            error_details=details,
            user_agent=request.headers.get("user-agent"),
        )
    finally:
        db.close()


async def _error_response(request: Request, error: TrackerError) -> JSONResponse:
    headers = dict(getattr(request.state, "extra_headers", None) or {})
    if error.retry_after is not None:
        headers["Retry-After"] = str(error.retry_after)
    await run_in_threadpool(_record_error, request, error.status_code, f"{error.kind.value}: {error.message}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError):
        return await _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        if first.get("type") == "json_invalid":
            error = TrackerError("Invalid JSON in request body", kind=ErrorKind.VALIDATION_ERROR)
            return await _error_response(request, error)

        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        error = TrackerError(
            first.get("msg") or "Invalid request",
            field=".".join(loc) or None,
            kind=ErrorKind.VALIDATION_ERROR,
        )
        return await _error_response(request, error)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        await run_in_threadpool(
            _record_error,
            request,
            status_for(ErrorKind.SERVER_ERROR),
            "Unhandled error",
            details=f"{type(exc).__name__}: {exc}",
        )
        error = TrackerError("An unexpected error occurred. Please try again.", kind=ErrorKind.SERVER_ERROR)
        return JSONResponse(status_code=error.status_code, content=error.to_dict())


app = create_app()


# For running with: python -m tracker.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
