from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import pydantic
import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from allocentra import __version__
from allocentra.api.routes import audit, cycles, health, requests, runs
from allocentra.config import get_settings
from allocentra.core.errors import AllocentraError, ConcurrencyError
from allocentra.db.session import dispose_engine, init_engine
from allocentra.logging import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level)
    init_engine(settings)
    yield
    await dispose_engine()


async def handle_allocentra_error(request: Request, exc: AllocentraError) -> JSONResponse:
    headers = None
    if isinstance(exc, ConcurrencyError):
        headers = {"Retry-After": str(get_settings().retry_after_seconds)}
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=type(exc).__name__)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "details": jsonable_encoder(exc.details),
        },
        headers=headers,
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request payload",
            "error": "ValidationError",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


async def handle_model_validation_error(
    request: Request, exc: pydantic.ValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": f"Invalid {exc.title}",
            "error": "ValidationError",
            "details": {"errors": jsonable_encoder(exc.errors(include_url=False))},
        },
    )


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Allocentra API",
        version=__version__,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.cors_origins],
            allow_methods=["*"],
            allow_headers=["*"],
            allow_credentials=True,
        )

    app.add_exception_handler(AllocentraError, handle_allocentra_error)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, handle_request_validation_error  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        pydantic.ValidationError, handle_model_validation_error  # type: ignore[arg-type]
    )

    app.include_router(cycles.router, prefix=settings.api_prefix, tags=["cycles"])
    app.include_router(requests.router, prefix=settings.api_prefix, tags=["requests"])
    app.include_router(runs.router, prefix=settings.api_prefix, tags=["runs"])
    app.include_router(audit.router, prefix=settings.api_prefix, tags=["audit"])
    app.include_router(health.router, tags=["health"])
    return app


app = create_app()
