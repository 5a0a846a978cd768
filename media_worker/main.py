"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, Response

from media_worker.core.config import settings
from media_worker.core.logging import setup_logging
from media_worker.core.tracing import setup_tracing, shutdown_tracing
from media_worker.core.metrics import get_content_type, get_metrics, set_app_info
from media_worker.core.middleware import (
    MetricsMiddleware,
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
)
from media_worker.modules.job.dependencies import Worker, build_worker
from media_worker.modules.job.router import router as worker_router
from media_worker.modules.job.schemas import HealthResponse

# Seconds running jobs get to finish on shutdown
SHUTDOWN_GRACE_SECONDS = 30.0


def create_app(worker_factory: Callable[[], Worker] = build_worker) -> FastAPI:
    """Build the worker application.

    Args:
        worker_factory: Builds the dispatcher and its collaborators at startup

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Path(settings.TMP_DIR).mkdir(parents=True, exist_ok=True)
        app.state.worker = worker_factory()
        try:
            yield
        finally:
            await app.state.worker.dispatcher.shutdown(timeout=SHUTDOWN_GRACE_SECONDS)
            shutdown_tracing()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=(
            "Media processing worker: extracts listener audio tracks and captions "
            "from uploaded movies and transcodes playback variants."
        ),
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    @app.get("/health", tags=["health"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Liveness and dispatcher occupancy; no credential required."""
        dispatcher = app.state.worker.dispatcher
        return HealthResponse(
            status="ok",
            running=dispatcher.running,
            queued=dispatcher.queued(),
            max_concurrent=dispatcher.max_concurrent,
        )

    @app.get("/metrics", tags=["health"], include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus scrape endpoint."""
        return Response(content=get_metrics(), media_type=get_content_type())

    app.include_router(worker_router, prefix=settings.API_PREFIX)
    return app


setup_logging(
    level=settings.LOG_LEVEL if not settings.DEBUG else "DEBUG",
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=settings.ENVIRONMENT,
    otlp_endpoint=settings.OTLP_ENDPOINT,
)

set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

app = create_app()
