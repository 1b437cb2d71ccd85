# Essential imports
import asyncio
import time
from datetime import datetime, timezone
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exception_handlers import http_exception_handler
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from routers import auth, setup_admin, health

# Import all models for SQLAlchemy relationship resolution
import models  # This triggers the imports in models/__init__.py
from core.database import Base, engine, SessionLocal
from core.kv import create_kv_store
from core.exceptions import ApiError
from services.token_service import TokenService

# Logging imports
from core.logging_config import setup_logging, get_logger
from core.config import settings
from utils.logger import log_request, sanitize_log_data
from utils.cookies import clear_auth_cookies

# Middleware imports
from fastapi.middleware.cors import CORSMiddleware
from middleware import RequestIDMiddleware, SecurityHeadersMiddleware, RateLimitMiddleware, get_request_id, get_client_ip
from middleware.rate_limiter import api_rate_limiter

# Initialize logging
setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR
)

logger = get_logger(__name__)


async def cleanup_refresh_tokens_periodically(interval_seconds: int, stop: asyncio.Event):
    """
    Delete expired and revoked refresh token rows, then wait for the next run.
    Setting ``stop`` ends the loop once any run in progress has finished.
    """
    while not stop.is_set():
        db = SessionLocal()
        try:
            await run_in_threadpool(TokenService.cleanup_expired_tokens, db)
        except SQLAlchemyError:
            logger.error("Refresh token cleanup failed", exc_info=True)
        finally:
            db.close()

        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)

    stop_cleanup = asyncio.Event()
    app.state.cleanup_task = asyncio.create_task(
        cleanup_refresh_tokens_periodically(settings.TOKEN_CLEANUP_INTERVAL_HOURS * 3600, stop_cleanup)
    )

    logger.info("Application startup complete", extra={"event": "startup", "env": settings.ENV})
    yield

    stop_cleanup.set()
    await app.state.cleanup_task
    logger.info("Application shutting down", extra={"event": "shutdown"})


app = FastAPI(
    title="Grubtech API",
    description="Authentication and content API for the Grubtech website",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Key/value store used by the rate limiters
app.state.kv = create_kv_store(settings.KV_URL)


# Middleware is listed innermost first; the request passes
# request id -> logging -> secure headers -> CORS -> rate limit.

app.add_middleware(RateLimitMiddleware, limiter_factory=api_rate_limiter, path_prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    # Company domains always; anything outside production
    allow_origin_regex=r"https://([a-z0-9-]+\.)*grubtech\.com" if settings.is_production else r".*",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
    max_age=86400,
)

app.add_middleware(SecurityHeadersMiddleware)


# HTTP Request Logging Middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, duration and client IP.
    Health and readiness checks are skipped.
    """
    if request.url.path in ("/api/health", "/api/ready"):
        return await call_next(request)

    start_time = time.time()

    logger.debug(
        "Request received",
        extra={"path": request.url.path, "headers": sanitize_log_data(dict(request.headers))}
    )

    response = await call_next(request)

    duration = (time.time() - start_time) * 1000
    user = getattr(request.state, "user", None)

    log_request(
        logger,
        request.method,
        request.url.path,
        response.status_code,
        duration,
        user_id=user.get("id") if user else None,
        extra={"client_ip": get_client_ip(request), "user_agent": request.headers.get("User-Agent")}
    )

    return response


app.add_middleware(RequestIDMiddleware)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    response = JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=exc.headers
    )
    if exc.clear_cookies:
        clear_auth_cookies(response)
    return response


@app.exception_handler(StarletteHTTPException)
async def not_found_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code != status.HTTP_404_NOT_FOUND:
        return await http_exception_handler(request, exc)

    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "success": False,
            "error": {
                "code": "NOT_FOUND",
                "message": f"Route {request.method} {request.url.path} not found"
            },
            "meta": {
                "requestId": get_request_id(request),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Log unhandled exceptions with full context and return a generic 500.
    Outside production the message is passed through to help debugging.
    """
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal error occurred" if settings.is_production else str(exc)
            },
            "meta": {
                "requestId": get_request_id(request),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        }
    )


# Including routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(setup_admin.router)
