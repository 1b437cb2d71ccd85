"""
Fixed-window rate limiting backed by the KV store.

Each (limiter type, client IP) pair owns one record under
``ratelimit:{type}:{ip}`` holding ``{"count", "firstRequest"}``. The record's
TTL equals the window, so stale windows expire on their own.

Limiters are used in two places:
- as a route dependency: ``dependencies=[Depends(rate_limit(login_rate_limiter))]``
- as ``RateLimitMiddleware`` over every ``/api`` path

If the store misbehaves the request is let through (fail open).
"""

import math
import time
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.middleware.base import BaseHTTPMiddleware

from core.config import settings
from core.exceptions import KVStoreError, RateLimitExceeded
from core.kv import KeyValueStore
from utils.deps import kv_dependency
from utils.logger import get_logger

logger = get_logger(__name__)


class RateLimitRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int
    first_request: int = Field(alias="firstRequest")  # epoch milliseconds

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def get_client_ip(request: Request) -> str:
    cf_ip = request.headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


class RateLimiter:
    def __init__(
        self,
        type: str,
        window_ms: int,
        max_requests: int,
        message: str,
        skip_successful_requests: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.type = type
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.message = message
        self.skip_successful_requests = skip_successful_requests
        self._clock = clock

    @property
    def window_seconds(self) -> int:
        return math.ceil(self.window_ms / 1000)

    def key(self, ip: str) -> str:
        return f"ratelimit:{self.type}:{ip}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def hit(self, kv: KeyValueStore, ip: str) -> tuple[Optional[RateLimitRecord], dict[str, str]]:
        """
        Count one request from ``ip``.

        Returns:
            (record, headers) to apply to the response. The record is None
            when the store failed and the request was let through.

        Raises:
            RateLimitExceeded: the request pushed the count past the limit
        """
        key = self.key(ip)
        now = self._now_ms()

        try:
            raw = kv.get(key)
            record = RateLimitRecord.model_validate_json(raw) if raw else None

            if record is None or now - record.first_request >= self.window_ms:
                record = RateLimitRecord(count=1, first_request=now)
            else:
                record.count += 1

            remaining_ms = max(0, self.window_ms - (now - record.first_request))
            reset = str(math.ceil((record.first_request + self.window_ms) / 1000))

            if record.count > self.max_requests:
                retry_after = math.ceil(remaining_ms / 1000)
                logger.warning(
                    "Rate limit exceeded",
                    extra={"limiter": self.type, "client_ip": ip, "count": record.count, "max": self.max_requests}
                )
                raise RateLimitExceeded(
                    self.message,
                    retry_after=retry_after,
                    headers={
                        "X-RateLimit-Limit": str(self.max_requests),
                        "X-RateLimit-Remaining": "0",
                        "X-RateLimit-Reset": reset,
                        "Retry-After": str(retry_after),
                    },
                )

            kv.put(key, record.to_json(), expiration_ttl=self.window_seconds)

        except (KVStoreError, ValueError) as exc:
            logger.warning(
                "Rate limiter store error, allowing request",
                extra={"limiter": self.type, "client_ip": ip, "error": str(exc)}
            )
            return None, {}

        headers = {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(max(0, self.max_requests - record.count)),
            "X-RateLimit-Reset": reset,
        }
        return record, headers

    def forgive(self, kv: KeyValueStore, ip: str, record: RateLimitRecord) -> None:
        """Give back the hit of a successful request (skip-successful mode)."""
        record.count = max(0, record.count - 1)
        try:
            kv.put(self.key(ip), record.to_json(), expiration_ttl=self.window_seconds)
        except KVStoreError as exc:
            logger.warning(
                "Rate limiter store error while forgiving request",
                extra={"limiter": self.type, "client_ip": ip, "error": str(exc)}
            )


# Default windows and limits; production is stricter than everything else
MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

LOGIN_WINDOW_MS = 15 * MINUTE_MS
LOGIN_MAX_PRODUCTION = 20
LOGIN_MAX_DEVELOPMENT = 100

LEAD_WINDOW_MS = HOUR_MS
LEAD_MAX_PRODUCTION = 10
LEAD_MAX_DEVELOPMENT = 50

API_WINDOW_MS = 15 * MINUTE_MS
API_MAX_PRODUCTION = 1000
API_MAX_DEVELOPMENT = 5000

ANALYTICS_WINDOW_MS = MINUTE_MS
ANALYTICS_MAX_PRODUCTION = 500
ANALYTICS_MAX_DEVELOPMENT = 2000

SETUP_WINDOW_MS = HOUR_MS
SETUP_MAX = 5


def _max_requests(production_max: int, development_max: int) -> int:
    if settings.RATE_LIMIT_MAX_REQUESTS and settings.RATE_LIMIT_MAX_REQUESTS > 0:
        return settings.RATE_LIMIT_MAX_REQUESTS
    return production_max if settings.is_production else development_max


def _window_ms(default_ms: int) -> int:
    if settings.RATE_LIMIT_WINDOW_MS and settings.RATE_LIMIT_WINDOW_MS > 0:
        return settings.RATE_LIMIT_WINDOW_MS
    return default_ms


def login_rate_limiter() -> RateLimiter:
    """Brute-force guard for login. Only failed attempts count."""
    return RateLimiter(
        type="login",
        window_ms=_window_ms(LOGIN_WINDOW_MS),
        max_requests=_max_requests(LOGIN_MAX_PRODUCTION, LOGIN_MAX_DEVELOPMENT),
        message="Too many login attempts from this IP, please try again after 15 minutes",
        skip_successful_requests=True,
    )


def lead_rate_limiter() -> RateLimiter:
    """Spam guard for lead and contact form submissions."""
    return RateLimiter(
        type="lead",
        window_ms=_window_ms(LEAD_WINDOW_MS),
        max_requests=_max_requests(LEAD_MAX_PRODUCTION, LEAD_MAX_DEVELOPMENT),
        message="Too many form submissions from this IP, please try again later",
    )


def api_rate_limiter() -> RateLimiter:
    return RateLimiter(
        type="api",
        window_ms=_window_ms(API_WINDOW_MS),
        max_requests=_max_requests(API_MAX_PRODUCTION, API_MAX_DEVELOPMENT),
        message="Too many requests from this IP, please try again later",
    )


def analytics_rate_limiter() -> RateLimiter:
    # Page views fire automatically, hence the short window and high ceiling
    return RateLimiter(
        type="analytics",
        window_ms=_window_ms(ANALYTICS_WINDOW_MS),
        max_requests=_max_requests(ANALYTICS_MAX_PRODUCTION, ANALYTICS_MAX_DEVELOPMENT),
        message="Too many analytics requests, please slow down",
    )


def setup_rate_limiter() -> RateLimiter:
    """Admin setup token guard. Same limit everywhere, not overridable."""
    return RateLimiter(
        type="setup",
        window_ms=SETUP_WINDOW_MS,
        max_requests=SETUP_MAX,
        message="Too many setup attempts from this IP, please try again after an hour",
    )


def rate_limit(factory: Callable[[], RateLimiter]):
    """
    Build a route dependency from a limiter factory.

    In skip-successful mode the hit is given back once the handler returns
    without raising; handlers report failures by raising.

    The headers are also kept on ``request.state`` so that error responses,
    which are built from scratch, still report this limiter's quota.
    """
    async def dependency(request: Request, response: Response, kv: kv_dependency):
        limiter = factory()
        ip = get_client_ip(request)

        record, headers = limiter.hit(kv, ip)
        response.headers.update(headers)
        request.state.rate_limit_headers = headers

        yield

        if limiter.skip_successful_requests and record is not None:
            limiter.forgive(kv, ip, record)

    return dependency


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies one limiter to every request under ``path_prefix``."""

    def __init__(self, app, limiter_factory: Callable[[], RateLimiter], path_prefix: str = "/api"):
        super().__init__(app)
        self.limiter_factory = limiter_factory
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        kv = request.app.state.kv
        limiter = self.limiter_factory()
        ip = get_client_ip(request)

        try:
            record, headers = limiter.hit(kv, ip)
        except RateLimitExceeded as exc:
            return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)

        response = await call_next(request)

        # A route-level limiter's headers take precedence
        route_headers = getattr(request.state, "rate_limit_headers", None)
        if route_headers:
            response.headers.update(route_headers)
        for name, value in headers.items():
            response.headers.setdefault(name, value)

        if limiter.skip_successful_requests and record is not None and response.status_code < 400:
            limiter.forgive(kv, ip, record)

        return response
