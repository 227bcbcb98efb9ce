import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from summarybench.application import build_generation_service, configure_generation_service, get_generation_service
from summarybench.core.errors import ConfigurationError, NotFoundError, OrchestrationError, SubmissionError
from summarybench.core.logging_utils import setup_logging
from summarybench.core.settings import Settings
from summarybench.routes import documents, jobs

LOGGER = logging.getLogger(__name__)


def error_status(exc: OrchestrationError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, SubmissionError):
        return 503 if exc.unconfigured else 502
    return 502


def create_app(settings: Settings | None = None, *, configure_clients: bool = True) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)

    app = FastAPI(title="Summary Bench Orchestration API", version="0.1.0")

    if configure_clients and (settings.workflow_configured or settings.storage_configured):
        configure_generation_service(build_generation_service(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrchestrationError)
    async def orchestration_error(request: Request, exc: OrchestrationError) -> JSONResponse:
        status_code = error_status(exc)
        LOGGER.warning("%s %s failed with %s (%s): %s", request.method, request.url.path, exc.kind, status_code, exc.message)
        return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})

    app.include_router(documents.router, prefix="/api")
    app.include_router(jobs.router, prefix="/api")
    app.include_router(jobs.usage_router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Summary Bench Orchestration API",
                "docs": "/docs",
                "health": "/api/jobs",
                "configured": get_generation_service().configured,
            }
        )

    return app


app = create_app()
