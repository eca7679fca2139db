"""
Disaster Training Platform API
Main FastAPI application entry point.

Serve `disaster_training.main:asgi_app`: it routes /socket.io to the
notification hub and everything else to the FastAPI app.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
import asyncio
import logging
import time

import socketio

from disaster_training.config import settings
from disaster_training.database import init_db, close_db
from disaster_training.exceptions import InternalError, PlatformError
from disaster_training.hubs import LiveSessionRegistry, NotificationHub
from disaster_training.rate_limit import RateLimiter

# Import routers
from disaster_training.api.auth import router as auth_router
from disaster_training.api.trainings import router as trainings_router
from disaster_training.api.analytics import router as analytics_router
from disaster_training.api.system import router as system_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV})...")
    await init_db()
    logger.info("Database initialized")

    if settings.RATE_LIMIT_ENABLED:
        app.state.rate_limiter = RateLimiter.from_url(
            settings.REDIS_URL, settings.RATE_LIMIT_WINDOW_SEC, settings.RATE_LIMIT_MAX
        )

    sweeper = asyncio.create_task(
        app.state.hub.run_session_sweeper(settings.LIVE_SESSION_SWEEP_INTERVAL_SEC)
    )

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    limiter = getattr(app.state, "rate_limiter", None)
    if limiter is not None:
        await limiter.close()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    ## Disaster-preparedness training management

    #### Accounts & Roles
    - SuperAdmin, Admin, ATI, NGO and Volunteer roles with fixed permissions
    - Approval workflow for organizer and admin accounts
    - State-scoped administration

    #### Trainings
    - Create, update and approve training events
    - Registration with capacity and deadline rules
    - Attendance and feedback

    #### Analytics
    - Dashboard projections, GeoJSON map data, state drill-down

    #### Real-time
    - Socket.IO notifications at `/socket.io`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Socket.IO server and hub
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=settings.CORS_ORIGINS)
app.state.hub = NotificationHub(
    sio,
    sessions=LiveSessionRegistry(idle_timeout_sec=settings.LIVE_SESSION_IDLE_TIMEOUT_SEC)
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Rate limiting middleware
@app.middleware("http")
async def rate_limit(request: Request, call_next):
    """Fixed-window limit per client IP on API routes."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None or not request.url.path.startswith(settings.API_PREFIX):
        return await call_next(request)

    client_id = request.client.host if request.client else "unknown"
    allowed, remaining = await limiter.hit(client_id)
    if not allowed:
        logger.warning(f"Rate limit exceeded for {client_id}")
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "message": "Too many requests from this IP, please try again later."
            },
            headers={"Retry-After": str(settings.RATE_LIMIT_WINDOW_SEC)}
        )

    response = await call_next(request)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    return response


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request processing time to response headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Exception handlers
@app.exception_handler(PlatformError)
async def platform_error_handler(request: Request, exc: PlatformError):
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location), "message": error.get("msg")})
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": "Validation failed", "errors": errors}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=InternalError().to_envelope())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    error = InternalError(str(exc) if settings.APP_DEBUG else None)
    return JSONResponse(status_code=500, content=error.to_envelope())


# Include routers
app.include_router(auth_router, prefix=settings.API_PREFIX)
app.include_router(trainings_router, prefix=settings.API_PREFIX)
app.include_router(analytics_router, prefix=settings.API_PREFIX)
app.include_router(system_router, prefix=settings.API_PREFIX)


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": f"{settings.API_PREFIX}/health"
    }


# Ready endpoint for k8s probes
@app.get("/ready", tags=["Health"])
async def ready():
    """Readiness probe endpoint."""
    return {"status": "ready"}


# Live endpoint for k8s probes
@app.get("/live", tags=["Health"])
async def live():
    """Liveness probe endpoint."""
    return {"status": "alive"}


# ASGI entry point: Socket.IO in front of the API
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "disaster_training.main:asgi_app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
