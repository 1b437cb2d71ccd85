import time
from datetime import datetime, timezone
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from core.config import settings
from core.exceptions import KVStoreError
from utils.deps import db_dependency, kv_dependency
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(tags=["health"])


@router.get("/")
async def api_info():
    return {
        "success": True,
        "data": {
            "name": "Grubtech API",
            "version": "1.0.0",
            "environment": settings.ENV,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    }


@router.get("/api/health")
async def health_check(db: db_dependency, kv: kv_dependency):
    """
    Database down -> unhealthy (503); KV down -> degraded (200).
    """
    health = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {}
    }

    start = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
        health["checks"]["database"] = {
            "status": "healthy",
            "latency": round((time.perf_counter() - start) * 1000, 2)
        }
    except SQLAlchemyError as exc:
        logger.error("Health check - database unavailable", extra={"error": str(exc)})
        health["status"] = "unhealthy"
        health["checks"]["database"] = {"status": "unhealthy", "error": str(exc)}

    start = time.perf_counter()
    try:
        kv.ping()
        kv.get("health-check")
        health["checks"]["kv"] = {
            "status": "healthy",
            "latency": round((time.perf_counter() - start) * 1000, 2)
        }
    except KVStoreError as exc:
        logger.warning("Health check - KV store unavailable", extra={"error": str(exc)})
        if health["status"] == "healthy":
            health["status"] = "degraded"
        health["checks"]["kv"] = {"status": "degraded", "error": str(exc)}

    status_code = 503 if health["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=health)


@router.get("/api/ready")
async def ready(db: db_dependency):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return JSONResponse(status_code=503, content={"ready": False, "reason": "Database not available"})
    return {"ready": True}
