"""
Logging utility functions and helpers.
"""

import logging
from typing import Any, Dict, Optional


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove sensitive information from log data.

    Keys are matched case-insensitively against a list of sensitive names.
    Tokens keep their first 8 characters for correlation; everything else
    sensitive is fully redacted. Nested dictionaries are sanitized recursively.
    """
    sensitive_fields = {
        'password', 'token', 'secret', 'api_key', 'access_token',
        'refresh_token', 'authorization', 'cookie', 'x-setup-token'
    }

    sanitized = data.copy()

    for key, value in sanitized.items():
        if any(sensitive in key.lower() for sensitive in sensitive_fields):
            if isinstance(value, str):
                if 'token' in key.lower() and len(value) > 8:
                    sanitized[key] = f"{value[:8]}..."
                else:
                    sanitized[key] = "***REDACTED***"

        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)

    return sanitized


def log_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None
):
    """
    Log an HTTP request in a structured format.

    The level follows the status code: 5xx -> ERROR, 4xx -> WARNING,
    everything else -> INFO.

    Usage:
        log_request(logger, "POST", "/api/auth/login", 200, 45.2, user_id=123)
    """
    log_data = {
        "http_method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }

    if user_id:
        log_data["user_id"] = user_id

    if extra:
        log_data.update(sanitize_log_data(extra))

    if status_code >= 500:
        logger.error(f"{method} {path} - {status_code}", extra=log_data)
    elif status_code >= 400:
        logger.warning(f"{method} {path} - {status_code}", extra=log_data)
    else:
        logger.info(f"{method} {path} - {status_code}", extra=log_data)


def log_auth_event(
    logger: logging.Logger,
    event: str,
    success: bool = True,
    user_id: Optional[int] = None,
    username: Optional[str] = None,
    client_ip: Optional[str] = None,
    reason: Optional[str] = None
):
    """
    Log an authentication event (login, refresh, logout, logout_all).

    Failures are logged at WARNING with the reason, successes at INFO.

    Usage:
        log_auth_event(logger, "login", user_id=1, username="admin", client_ip=ip)
        log_auth_event(logger, "refresh", success=False, reason="INVALID_REFRESH_TOKEN")
    """
    log_data = {"auth_event": event, "success": success}

    if user_id:
        log_data["user_id"] = user_id
    if username:
        log_data["username"] = username
    if client_ip:
        log_data["client_ip"] = client_ip
    if reason:
        log_data["reason"] = reason

    if success:
        logger.info(f"Auth {event} succeeded", extra=log_data)
    else:
        logger.warning(f"Auth {event} failed", extra=log_data)
