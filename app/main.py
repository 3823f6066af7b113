"""
FastAPI main application for the QnA bot

This module sets up the FastAPI application with:
- Service wiring on startup (knowledge base, scorer, storage, dialog)
- Error handling
- Request logging
- Logging configuration
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uvicorn
from app.config import Settings, settings as default_settings
from app.api import get_api_router
from app.errors import ConfigError, ValidationError
from app.models import ErrorResponse
from app.startup import build_services

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging from the log level and format settings."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to wire the bot with; defaults to the process settings

    Returns:
        FastAPI: Configured application
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info(f"Starting QnA bot API ({settings.environment})...")
        try:
            app.state.services = build_services(settings)
        except (ConfigError, ValidationError) as e:
            logger.error(f"Application startup failed: {e}")
            raise
        logger.info("Application startup completed successfully")

        yield

        # Shutdown
        logger.info("Shutting down QnA bot API...")
        app.state.services = None

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests.

        Args:
            request: HTTP request
            call_next: Next middleware/endpoint

        Returns:
            HTTP response
        """
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.4f}s")
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """
        Handle HTTP exceptions.

        Args:
            request: HTTP request
            exc: HTTP exception

        Returns:
            JSON error response
        """
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")

        if isinstance(exc.detail, dict):
            error_response = ErrorResponse(
                error=str(exc.detail.get("error", "Request failed")),
                error_code=str(exc.status_code),
                details=exc.detail,
            )
        else:
            error_response = ErrorResponse(error=str(exc.detail), error_code=str(exc.status_code))

        return JSONResponse(status_code=exc.status_code, content=error_response.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Handle request validation errors.

        Args:
            request: HTTP request
            exc: Validation exception

        Returns:
            JSON error response
        """
        logger.error(f"Validation Error: {exc.errors()}")

        error_response = ErrorResponse(
            error="Request validation failed",
            error_code="VALIDATION_ERROR",
            details={"errors": [str(err.get("msg")) for err in exc.errors()]},
        )
        return JSONResponse(status_code=422, content=error_response.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """
        Handle general exceptions.

        Args:
            request: HTTP request
            exc: Exception

        Returns:
            JSON error response
        """
        logger.error(f"Unhandled Exception: {type(exc).__name__} - {str(exc)}")

        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={"exception_type": type(exc).__name__},
        )
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    app.include_router(get_api_router(), prefix="/api/v1")

    @app.get("/")
    async def root():
        """
        Root endpoint with basic API information.

        Returns:
            JSON response with API info
        """
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
            "api_prefix": "/api/v1",
        }

    return app


# Configure logging
configure_logging(default_settings)

app = create_app()


def main():
    """Main entry point for running the application."""
    try:
        logger.info(f"Starting server on {default_settings.app_host}:{default_settings.app_port}")

        uvicorn.run(
            "app.main:app",
            host=default_settings.app_host,
            port=default_settings.app_port,
            reload=default_settings.debug,
            log_level=default_settings.log_level.lower(),
            access_log=True,
        )

    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")


if __name__ == "__main__":
    main()
