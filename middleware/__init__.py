"""
Middleware package exports.
"""

from middleware.request_id import RequestIDMiddleware, get_request_id
from middleware.security_headers import SecurityHeadersMiddleware
from middleware.rate_limiter import RateLimitMiddleware, RateLimiter, rate_limit, get_client_ip

__all__ = [
    "RequestIDMiddleware", "get_request_id", "SecurityHeadersMiddleware",
    "RateLimitMiddleware", "RateLimiter", "rate_limit", "get_client_ip",
]
