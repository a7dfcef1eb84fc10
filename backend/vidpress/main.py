"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response

from vidpress.core.config import settings
from vidpress.core.database import dispose_engine, init_models
from vidpress.core.logging import setup_logging
from vidpress.core.metrics import get_content_type, get_metrics, set_app_info
from vidpress.core.tracing import setup_tracing, shutdown_tracing
from vidpress.modules.transcoding.router import router as transcode_router

ENVIRONMENT = "development" if settings.DEBUG else "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    yield
    await dispose_engine()
    shutdown_tracing()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Job status and log lookup for the vidpress transcoding worker.",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=ENVIRONMENT,
    enable_console_export=settings.TRACING_CONSOLE_EXPORT,
)

set_app_info(version=settings.VERSION, environment=ENVIRONMENT)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(transcode_router, prefix=settings.API_V1_PREFIX)
