# app/routes/health.py
"""
Health check endpoints covering the cache, notification queues, mail
transport, realtime layer and database pool.
"""

import time

from fastapi import APIRouter, Depends

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.container import AppServices, get_services
from app.services.notification_queue import NotificationQueueError

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "task-manager-realtime"}


@router.get("/readyz")
async def readyz(services: AppServices = Depends(get_services)):
    """
    Readiness check.

    Optional infrastructure (Redis, SMTP, Postgres) that is not configured is
    reported as disabled and does not fail readiness; configured but
    unreachable infrastructure does.
    """
    checks = {}
    overall_ok = True

    # 1) Cache
    t0 = time.time()
    if settings.cache_enabled():
        cache_ok = await services.cache.ping()
        checks["cache"] = {
            "ok": cache_ok,
            "enabled": services.cache.is_active(),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        log_health_check("cache", cache_ok, checks["cache"]["latency_ms"])
        overall_ok = overall_ok and cache_ok
    else:
        checks["cache"] = {"ok": True, "enabled": False}

    # 2) Notification queues
    t0 = time.time()
    if settings.queue_enabled():
        queue_ok = await services.queues.ping()
        checks["queues"] = {
            "ok": queue_ok,
            "enabled": services.queues.is_active(),
            "latency_ms": round((time.time() - t0) * 1000, 1),
            "counts": await services.queues.counts() if queue_ok else {},
            "workers_running": sum(1 for w in services.workers if w.running),
        }
        log_health_check("queues", queue_ok, checks["queues"]["latency_ms"])
        overall_ok = overall_ok and queue_ok
    else:
        checks["queues"] = {"ok": True, "enabled": False}

    # 3) Mail transport - configuration only, no SMTP round trip
    checks["mail"] = {"ok": True, "configured": services.transport.configured}

    # 4) Realtime
    realtime_ok = services.realtime.bound
    checks["realtime"] = {
        "ok": realtime_ok,
        "online_users": services.realtime.online_count(),
    }
    overall_ok = overall_ok and realtime_ok

    # 5) Database pool
    if settings.database_configured():
        t0 = time.time()
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
            "pool_size": db_health.get("pool_size", 0),
            "pool_available": db_health.get("pool_available", 0),
        }
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        log_health_check(
            "database", is_healthy, checks["database"]["latency_ms"], db_health.get("error")
        )
        overall_ok = overall_ok and is_healthy
    else:
        checks["database"] = {"ok": True, "enabled": False}

    checks["configuration"] = {
        "ok": True,
        "environment": settings.environment,
        "redis_url_set": settings.cache_enabled(),
        "smtp_settings_complete": settings.smtp_configured(),
        "database_url_set": settings.database_configured(),
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()


@router.get("/health/queues")
async def queue_health(services: AppServices = Depends(get_services)):
    """Queue depths plus the most recent permanently failed jobs."""
    if not services.queues.is_active():
        return {"enabled": False}

    try:
        failed = await services.queues.email.failed_jobs(limit=20)
        failed += await services.queues.task_reminders.failed_jobs(limit=20)
    except NotificationQueueError as e:
        return {"enabled": True, "error": str(e)}

    return {
        "enabled": True,
        "counts": await services.queues.counts(),
        "failed": [
            {
                "id": job.id,
                "queue": job.queue,
                "kind": job.kind,
                "attempts": job.attempts,
                "last_error": job.last_error,
                "finished_at": job.finished_at,
            }
            for job in failed
        ],
    }
