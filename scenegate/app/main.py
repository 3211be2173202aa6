from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from scenegate.app.api.scenes import router as scenes_router
from scenegate.app.core.config import settings
from scenegate.app.core.http_client import init_http_client
from scenegate.app.core.logging import get_logger, setup_logging
from scenegate.app.exceptions import (
    GatewayException,
    InvalidSceneRequestError,
    RateLimitExceededError,
)
from scenegate.app.middleware.request_id import RequestIdMiddleware
from scenegate.app.providers import create_scene_provider
from scenegate.app.services.admission import AdmissionController


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.

        Builds the admission controller (fails fast on bad rate limit
        configuration) and the scene provider with a shared HTTP client.
        """
        async with init_http_client() as http_client:
            app.state.admission = AdmissionController.from_settings(settings)
            app.state.scene_provider = create_scene_provider(http_client)

            logger.info(
                "Application startup complete",
                extra={
                    "environment": settings.environment,
                    "rate_limit_enabled": not settings.rate_limit_disabled,
                    "data_dir": str(app.state.admission.global_store.data_dir),
                    "provider": app.state.scene_provider.name,
                },
            )
            yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="SceneGate",
        description="Scene generation API with per-session and global rate limiting",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    # Session middleware holds the per-client token buckets
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret_key,
        session_cookie=settings.session_cookie_name,
        max_age=settings.session_max_age,
        https_only=settings.is_production,
    )

    # Request ID middleware for tracing (outermost so every log line has it)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(scenes_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "environment": settings.environment,
            "rate_limit_enabled": not settings.rate_limit_disabled,
        }

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        """Handle RateLimitExceededError and return HTTP 429 with Retry-After."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Handle input errors (4xx) and upstream/system errors (5xx)."""
        is_system_error = exc.status_code >= 500
        if is_system_error:
            logger.error(f"Scene generator error: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "type": "system_error" if is_system_error else "input_error",
                "message": (
                    "An error occurred while generating the scene. Please try again."
                    if is_system_error
                    else exc.message
                ),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Answer unparseable bodies with the same 400 envelope as a blank description."""
        logger.info(f"Rejected invalid request body: {exc.errors()}")
        return await gateway_exception_handler(request, InvalidSceneRequestError())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns the traceback to the client; debug mode adds the
        exception message.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={"exception_type": type(exc).__name__},
        )

        content = {
            "error": True,
            "type": "system_error",
            "message": "An error occurred while generating the scene. Please try again.",
            "request_id": request_id,
        }
        if settings.debug:
            content["detail"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
