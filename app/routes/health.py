# app/routes/health.py
"""
Health check endpoints for the attendance reporter.
"""

import os
import time

from fastapi import APIRouter, Request

from app.config import settings

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "zoom-attendance-reporter"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: token store, report watcher, report directories, configuration.
    """
    checks = {}
    overall_ok = True
    pipeline = getattr(request.app.state, "pipeline", None)
    watcher = getattr(request.app.state, "report_watcher", None)

    # 1) Token store
    t0 = time.time()
    if pipeline is None:
        checks["token_store"] = {"ok": False, "error": "Pipeline not initialized"}
        overall_ok = False
    else:
        try:
            store_health = await pipeline.credential_cache.store.health_check()
            checks["token_store"] = {
                "ok": bool(store_health.get("healthy")),
                "backend": store_health.get("backend"),
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            overall_ok = overall_ok and checks["token_store"]["ok"]
        except Exception as e:
            checks["token_store"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    # 2) Report watcher
    if watcher is None:
        checks["report_watcher"] = {"ok": False, "error": "Watcher not started"}
        overall_ok = False
    else:
        watcher_status = watcher.status()
        checks["report_watcher"] = {"ok": watcher_status["running"], **watcher_status}
        overall_ok = overall_ok and watcher_status["running"]

    # 3) Report directories
    directories = {}
    for name, path in settings.report_directories().items():
        writable = path.is_dir() and os.access(path, os.W_OK)
        directories[name] = {"path": str(path), "writable": writable}
        overall_ok = overall_ok and writable
    checks["directories"] = directories

    # 4) Configuration checks
    config_issues = []
    for name in (
        "ZOOM_ACCOUNT_ID",
        "ZOOM_CLIENT_ID",
        "ZOOM_CLIENT_SECRET",
        "ZOOM_WEBHOOK_SECRET_TOKEN",
    ):
        if not getattr(settings, name):
            config_issues.append(f"{name} not set")
    if not settings.email_recipients():
        config_issues.append("EMAIL_RECIPIENTS not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "notification_trigger": settings.NOTIFICATION_TRIGGER,
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
