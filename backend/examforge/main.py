"""
ExamForge - FastAPI Application
Main application entry point with middleware and route configuration
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from examforge.api.v1 import api_router
from examforge.core.config import Settings, get_settings
from examforge.core.context import build_context
from examforge.core.database import init_db
from examforge.core.errors import ExamForgeError, InputError, NotFoundError, PreconditionError
from examforge.core.telemetry import configure_logging, init_telemetry

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InputError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    PreconditionError: status.HTTP_409_CONFLICT,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the process context on startup, release it on shutdown."""
    settings: Settings = app.state.settings

    if init_telemetry(settings):
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)

    context = build_context(settings)
    await init_db(context.engine)
    app.state.context = context
    logger.info("Startup complete: %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)

    yield

    await context.close()


async def examforge_error_handler(request: Request, exc: ExamForgeError) -> JSONResponse:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return JSONResponse(status_code=code, content={"detail": str(exc)})
    logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid payload", "errors": jsonable_encoder(exc.errors())},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Grounded exam generation and grading from imported study material",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ExamForgeError, examforge_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "examforge.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
    )
