"""
Application errors rendered as ``{"success": false, "error": ..., "code": ...}``.

Routes and services raise these; ``main.py`` turns them into JSON responses
(and clears the auth cookies when ``clear_cookies`` is set).
"""

from typing import Any, Dict, Optional

from starlette import status


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "REQUEST_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
        clear_cookies: bool = False,
    ):
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers
        self.extra = extra or {}
        self.clear_cookies = clear_cookies
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.message, "code": self.code}
        body.update(self.extra)
        return body


class AuthError(ApiError):
    """Missing, expired or invalid credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"


class ForbiddenError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class ConflictError(ApiError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class RateLimitExceeded(ApiError):
    """Raised when a client exceeds a rate limiter's quota."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, *, retry_after: int, headers: Dict[str, str]):
        self.retry_after = retry_after
        super().__init__(message, headers=headers, extra={"retryAfter": retry_after})


class KVStoreError(Exception):
    """The key/value store could not serve a request."""


class TokenExpiredError(AuthError):
    code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Token expired", **kwargs):
        kwargs.setdefault("extra", {"message": "Access token has expired. Please refresh your token."})
        super().__init__(message, **kwargs)


class InvalidTokenError(AuthError):
    code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid token", **kwargs):
        kwargs.setdefault("clear_cookies", True)
        super().__init__(message, **kwargs)
