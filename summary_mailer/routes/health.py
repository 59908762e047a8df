# summary_mailer/routes/health.py
"""
Health check endpoints with database pool and cache monitoring.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from summary_mailer.config import settings
from summary_mailer.db.pool import db_health_check
from summary_mailer.jobs.dispatch_job import get_dispatcher
from summary_mailer.services.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "summary-mailer"}


@router.get("/readyz")
async def readyz():
    """
    Readiness check covering the job store and, when configured, the response cache.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Redis (optional; absence only costs latency)
    if settings.cache_enabled():
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    else:
        checks["redis"] = {"ok": True, "enabled": False}

    # 3) Dispatcher (informational)
    checks["dispatcher"] = get_dispatcher().health_check()

    body = {"status": "ready" if overall_ok else "not_ready", "checks": checks}
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
