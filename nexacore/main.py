"""
NexaCore application: API gateway in front of the collaboration and
scheduling services.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nexacore.config import settings
from nexacore.errors import NexaCoreError, status_code_for
from nexacore.infrastructure.observability.logging import get_logger, setup_logging
from nexacore.jobs.worker import start_background_jobs, stop_background_jobs
from nexacore.middleware import ApiGatewayConfig, ApiGatewayMiddleware, build_rate_limiter
from nexacore.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start in-process maintenance jobs and stop them on shutdown."""
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        rate_limit_backend=settings.RATE_LIMIT_BACKEND,
    )
    app.state.background_tasks = []
    if settings.BACKGROUND_JOBS_ENABLED:
        app.state.background_tasks = start_background_jobs(settings.BACKGROUND_JOBS)
    try:
        yield
    finally:
        await stop_background_jobs(app.state.background_tasks)
        logger.info("Application shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="NexaCore",
        description="Multi-tenant ERP core services",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(health.router)

    @app.exception_handler(NexaCoreError)
    async def handle_domain_error(request: Request, exc: NexaCoreError):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error("Unhandled domain error", path=request.url.path, **exc.to_dict())
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    app.add_middleware(
        ApiGatewayMiddleware,
        config=ApiGatewayConfig(),
        limiter=build_rate_limiter(),
    )
    return app


app = create_app()
