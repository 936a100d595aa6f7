from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from jobengine.api.healthz import router as health_router
from jobengine.config.logging import setup_logging
from jobengine.config.settings import Settings, settings
from jobengine.core.exceptions import (
    JobEngineException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_engine_exception_handler,
)
from jobengine.cron.routes import router as cron_router
from jobengine.engine import JobEngine
from jobengine.jobs.routes import router as jobs_router


def create_app(
    app_settings: Settings | None = None,
    engine: JobEngine | None = None,
    *,
    start_engine: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app_settings = app_settings or settings

    # Initialize structured logging
    setup_logging(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        job_engine = engine or JobEngine(app_settings)
        app.state.engine = job_engine
        if start_engine:
            await job_engine.start()

        # Freeze registries outside development once handlers are registered
        if app_settings.environment != "development":
            job_engine.registry.freeze()
            job_engine.strategies.freeze()

        try:
            yield
        finally:
            if start_engine:
                await job_engine.stop()

    app = FastAPI(
        title=app_settings.app_name,
        description="Durable background job scheduling, retry and cron dispatch",
        version=app_settings.version,
        debug=app_settings.debug,
        openapi_url="/v1/openapi.json" if app_settings.debug else None,
        docs_url="/v1/docs" if app_settings.debug else None,
        redoc_url="/v1/redoc" if app_settings.debug else None,
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    if app_settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(JobEngineException, job_engine_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(cron_router, prefix="/v1")

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jobengine.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
