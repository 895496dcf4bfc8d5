# app/main.py
"""
Application entrypoint: FastAPI app with the Socket.IO server mounted in front
of it, and the lifecycle of the cache, queues, workers and realtime layer.
"""

import time
import uuid
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import (
    bind_log_context,
    clear_log_context,
    get_logger,
    log_request,
    setup_logging,
)
from app.jobs.notification_worker import start_notification_workers
from app.routes import health, realtime
from app.services.container import AppServices
from app.services.realtime.socket_server import create_socket_server

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)

services = AppServices.create()
sio = create_socket_server(services.realtime)


async def _shutdown(app_services: AppServices, started: list[str]) -> list[str]:
    """Tear down whatever started, in reverse order; returns the errors seen."""
    errors = []

    if "realtime" in started:
        app_services.realtime.unbind()

    if "workers" in started:
        for worker in app_services.workers:
            try:
                await worker.stop()
            except Exception as e:
                logger.error("Error stopping worker", queue=worker.queue.name, error=str(e))
                errors.append(f"Worker {worker.queue.name}: {e}")
        app_services.workers.clear()

    if "queues" in started:
        try:
            await app_services.queues.close()
        except Exception as e:
            logger.error("Error closing queues", error=str(e))
            errors.append(f"Queues: {e}")

    if "cache" in started:
        try:
            await app_services.cache.close()
        except Exception as e:
            logger.error("Error closing cache", error=str(e))
            errors.append(f"Cache: {e}")

    if "database_pool" in started:
        try:
            await db_pool.close()
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))
            errors.append(f"Database: {e}")

    return errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing cache")
        await services.cache.initialize()
        startup_tasks.append("cache")

        logger.info("Initializing notification queues")
        await services.queues.initialize()
        startup_tasks.append("queues")

        if not services.email_service.is_active():
            logger.warning("Email notifications disabled, no queue or SMTP transport available")

        lookups = (services.tasks, services.users) if db_pool.initialized else (None, None)
        services.workers = start_notification_workers(services.queues, services.transport, *lookups)
        startup_tasks.append("workers")

        services.realtime.bind(sio)
        startup_tasks.append("realtime")

        app.state.services = services
        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)
        await _shutdown(services, startup_tasks)
        raise

    yield

    logger.info("Application shutting down")
    shutdown_errors = await _shutdown(services, startup_tasks)

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Task Manager Realtime",
    description="Realtime mutation propagation and notification pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router)
app.include_router(realtime.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing, tagging every entry with a request id."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    bind_log_context(request_id=request_id)
    start_time = time.time()
    try:
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000
        log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
    finally:
        clear_log_context("request_id")

    response.headers["x-request-id"] = request_id
    return response


# Socket.IO handles /socket.io/, everything else (and lifespan) goes to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(asgi_app, host="0.0.0.0", port=8000)
