"""FastAPI application for the BMA calculator."""

import logging
import os
from contextlib import asynccontextmanager

import logfire
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from .agent import AnalysisGenerator, PropertyExtractor
from .config import settings
from .database import Store
from .errors import BMAError, ValidationError
from .routes import router
from .schemas import ErrorResponse, HealthResponse
from .service import BMAService

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code)


def create_app(
    store: Store | None = None,
    extractor: PropertyExtractor | None = None,
    generator: AnalysisGenerator | None = None,
    service: BMAService | None = None,
) -> FastAPI:
    """Build the application around an explicitly constructed service."""
    if service is None:
        store = store or Store.from_url(settings.database_url)
        service = BMAService(
            store,
            extractor or PropertyExtractor(),
            generator or AnalysisGenerator(),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize collections and indexes on startup."""
        service.store.init_schema()
        logger.info("BMA backend ready")
        yield
        service.store.engine.dispose()

    app = FastAPI(
        title="BMA Calculator API",
        description="Broker Market Analysis from listing pages captured by the browser extension",
        version="0.2.0",
        lifespan=lifespan,
    )
    app.state.service = service

    # Configure Logfire for observability (after app creation)
    if os.getenv("LOGFIRE_TOKEN"):
        logfire.configure()
        logfire.instrument_fastapi(app)
        logfire.instrument_pydantic_ai()
        logfire.instrument_sqlalchemy(engine=service.store.engine)

    # CORS for the frontend only
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_methods=["*"],
        allow_headers=["Origin", "Content-Type", "Accept"],
    )

    @app.exception_handler(BMAError)
    async def bma_error_handler(request: Request, exc: BMAError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        if any(error.get("loc", ("",))[0] == "path" for error in exc.errors()):
            return await bma_error_handler(request, ValidationError("Invalid address ID"))
        logger.warning(f"Invalid request body for {request.url.path}: {exc.errors()}")
        return await bma_error_handler(request, ValidationError("Invalid request body"))

    @app.get("/", response_model=HealthResponse, response_model_exclude_none=True)
    async def root():
        """Health check endpoint."""
        return HealthResponse(status="ok", service="BMA Calculator API")

    @app.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
    async def health_check():
        """Health check including the database."""
        service.store.ping()
        return HealthResponse(status="ok", database="ok")

    app.include_router(router)
    return app


app = create_app()
