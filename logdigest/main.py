"""
LogDigest - Main Application
============================

FastAPI application that analyzes container logs with a language model.

Responsibilities:
- Accept ordered log lines for a container
- Collapse repeated lines and apply per-container exclusion filters
- Keep every model request inside the context window, chunking and
  synthesizing when the logs are too large
- Return the analysis with token and line accounting
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from logdigest.config import Settings, get_settings
from logdigest.api.routes import router as api_router
from logdigest.core.line_filter import FilterRegistry
from logdigest.core.llm_client import create_completion_client
from logdigest.core.pipeline import AnalysisPipeline
from logdigest.core.prompts import PromptLoader
from logdigest.core.tokenizer import create_token_estimator
from logdigest.utils.logging import setup_logging, get_logger, set_correlation_id

logger = get_logger(__name__)


def build_pipeline(settings: Settings) -> AnalysisPipeline:
    """
    Build the pipeline and its collaborators from settings.

    Raises:
        FilterPatternError: a configured filter pattern does not compile
    """
    estimator = create_token_estimator(settings)
    return AnalysisPipeline(
        tokenizer=estimator,
        client=create_completion_client(settings, estimator),
        prompts=PromptLoader(settings),
        max_tokens=settings.llm_context_tokens,
        filters=FilterRegistry.from_config(settings.regexp_filters),
        ignore_dir=settings.ignore_dir,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the FastAPI application for the given (or environment) settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        logger.info(
            f"Starting {settings.service_name} v{settings.service_version}",
            extra={
                "version": settings.service_version,
                "llm_provider": settings.llm_provider.value,
                "tokenizer": settings.tokenizer_backend.value,
            }
        )

        app.state.pipeline = build_pipeline(settings)

        yield

        logger.info(f"Shutting down {settings.service_name}...")
        await app.state.pipeline.client.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="LogDigest",
        description="Token-budgeted language model analysis of container logs",
        version=settings.service_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Extract or generate a correlation ID for the request."""
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id

        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception: {exc}",
            extra={"path": request.url.path},
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.debug else None
            }
        )

    @app.get("/health", tags=["health"])
    async def health_check():
        return {
            "status": "healthy",
            "service": settings.service_name,
            "version": settings.service_version
        }

    @app.get("/ready", tags=["health"])
    async def readiness_check(request: Request):
        pipeline: Optional[AnalysisPipeline] = getattr(request.app.state, "pipeline", None)
        return {
            "status": "ready" if pipeline is not None else "starting",
            "service": settings.service_name,
            "llm_provider": settings.llm_provider.value,
            "llm_model": settings.llm_model,
            "context_tokens": settings.llm_context_tokens,
            "filtered_containers": len(pipeline.filters) if pipeline is not None else 0,
        }

    app.include_router(api_router, prefix="/api/v1")

    return app


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(
        service_name=settings.service_name,
        log_level=settings.log_level,
        json_output=settings.log_json
    )

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()
