"""
Zoom attendance reporter: webhook intake, report pipeline and watcher lifecycle.
"""

import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.jobs.report_watcher import ReportWatcher
from app.routes import health, meetings, webhook
from app.services.attendance.pipeline import build_attendance_pipeline
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
logger = get_logger(__name__)


async def _ensure_report_directories() -> None:
    for path in settings.report_directories().values():
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        notification_trigger=settings.NOTIFICATION_TRIGGER,
    )

    startup_tasks = []
    pipeline = None
    watcher = None

    try:
        await _ensure_report_directories()
        startup_tasks.append("report_directories")

        if fast_redis.configured:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        pipeline = build_attendance_pipeline()
        app.state.pipeline = pipeline
        startup_tasks.append("pipeline")

        watcher = ReportWatcher(settings.PROCESSED_CSV_DIR, pipeline.notifier.handle_new_report)
        await watcher.start()
        app.state.report_watcher = watcher
        startup_tasks.append("report_watcher")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if watcher is not None:
            await watcher.stop()
        if pipeline is not None:
            await pipeline.close()
        if "redis" in startup_tasks:
            await fast_redis.close()
        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await watcher.stop()
    except Exception as e:
        logger.error("Error stopping report watcher", error=str(e))
        shutdown_errors.append(f"Watcher: {e}")

    try:
        await pipeline.close()
    except Exception as e:
        logger.error("Error closing attendance pipeline", error=str(e))
        shutdown_errors.append(f"Pipeline: {e}")

    if "redis" in startup_tasks:
        await fast_redis.close()

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Zoom Attendance Reporter",
    description="Classifies Zoom meeting attendance and emails the report",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(webhook.router)
app.include_router(meetings.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=5500)
