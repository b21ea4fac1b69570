"""
FastAPI application entry point for the BetNad backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from betnad.config import Settings, get_settings
from betnad.dependencies import Services, build_services
from betnad.routes import auth_router, twitter_router, utc_timestamp, wallet_router
from betnad.schemas import ErrorResponse, RootResponse
from betnad.secret_store import log_config

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.effective_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="VALIDATION_ERROR", message=_validation_message(exc)
        ).model_dump(),
    )


def create_app(
    settings: Optional[Settings] = None, services: Optional[Services] = None
) -> FastAPI:
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting BetNad backend")
        services.startup()
        log_config(settings, services.secrets)
        try:
            yield
        finally:
            # uvicorn has stopped accepting connections and drained in-flight
            # requests by the time the lifespan exits.
            logger.info("Shutting down BetNad backend")
            services.shutdown()

    app = FastAPI(title="BetNad Backend API", version=API_VERSION, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origin.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    @app.get("/", response_model=RootResponse)
    def read_root():
        return RootResponse(
            message="BetNad Backend API",
            version=API_VERSION,
            status="running",
            timestamp=utc_timestamp(),
        )

    app.include_router(auth_router, prefix=settings.api_prefix)
    app.include_router(twitter_router, prefix=settings.api_prefix)
    app.include_router(wallet_router, prefix=settings.api_prefix)
    return app
