# summary_mailer/main.py
"""
FastAPI application with database pool, optional cache and dispatcher lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from summary_mailer.config import settings
from summary_mailer.db.pool import db_pool
from summary_mailer.infrastructure.observability.logging import get_logger, setup_logging
from summary_mailer.jobs.dispatch_job import get_dispatcher
from summary_mailer.repositories.job_repository import job_repository
from summary_mailer.routes import health, jobs
from summary_mailer.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if settings.AUTO_CREATE_SCHEMA:
            await job_repository.ensure_schema()
            startup_tasks.append("schema")

        if settings.cache_enabled():
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if "redis" in startup_tasks:
            await fast_redis.close()
        if "database_pool" in startup_tasks:
            await db_pool.close()

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    dispatcher = get_dispatcher()
    if dispatcher.inflight_count:
        logger.info("Draining in-flight dispatch tasks", inflight=dispatcher.inflight_count)
    await dispatcher.drain()

    if "redis" in startup_tasks:
        logger.info("Closing Redis connection")
        await fast_redis.close()

    logger.info("Closing database pool")
    await db_pool.close()
    logger.info("All services closed successfully")


app = FastAPI(
    title="Summary Mailer",
    description="Scheduled and recurring summary email dispatch",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(jobs.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
