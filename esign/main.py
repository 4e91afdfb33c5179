"""Main application entry point for the E-Signature API."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from esign.api.signature_requests import signature_requests_router
from esign.api.signing import signing_router
from esign.config.settings import Settings, get_settings
from esign.database.database import DatabaseConfig, dispose_engine, get_engine
from esign.utils.errors import APIError, create_field_error, create_validation_error


# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Error Handlers
# =============================================================================

async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle API errors and return structured responses."""
    response = exc.to_response()
    return JSONResponse(
        status_code=response.status_code,
        content=response.to_dict(),
    )


async def validation_error_handler(
    request: Request,
    exc: Union[RequestValidationError, PydanticValidationError],
) -> JSONResponse:
    """Report body, query and model validation failures as a 400 ``validation_error``."""
    error = create_validation_error(
        [
            create_field_error(
                ".".join(str(part) for part in e["loc"]),
                e["msg"],
                e["type"],
            )
            for e in exc.errors()
        ]
    )
    return await api_error_handler(request, error)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return await api_error_handler(request, APIError())


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database engine on startup and dispose of it on shutdown."""
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.app_name} {settings.app_version}")

    config = DatabaseConfig.from_settings(settings)
    logger.info(f"Connecting to database at {config.display_url}")
    get_engine(config)

    yield

    logger.info(f"Shutting down {settings.app_name}")
    dispose_engine()


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Signature request workflow: recipient access links, ordered "
            "signing, tamper-evident audit trail and sealed documents."
        ),
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(signature_requests_router)
    app.include_router(signing_router)

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(PydanticValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Check application health."""
        return {"status": "healthy", "version": settings.app_version}

    return app


# =============================================================================
# Application Instance
# =============================================================================

app = create_app()


# =============================================================================
# Development Server
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "esign.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
