"""FastAPI server for the NFSe pipeline.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import bling, health, rps
from core import __version__
from core.config import get_settings
from core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    CsrfError,
    IntegrationError,
    NotFoundError,
    RemoteApiError,
    RemoteTimeoutError,
    ValidationError,
)
from core.observability import configure_logging, get_logger

logger = get_logger(__name__)

# First match wins
ERROR_STATUS_CODES = (
    (CsrfError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 422),
    (RemoteTimeoutError, 504),
    (RemoteApiError, 502),
    (ConfigurationError, 503),
)


def status_code_for(error: IntegrationError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.warning(f"{request.method} {request.url.path} failed with {status_code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)
    logger.info("NFSe pipeline API starting up")

    yield

    logger.info("NFSe pipeline API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="NFSe Pipeline API",
        description="Generates, submits and reconciles NFSe service invoices for Bling sales orders",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(IntegrationError, integration_error_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(bling.router, prefix="/bling", tags=["Bling"])
    app.include_router(rps.router, prefix="/rps", tags=["RPS"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
