"""
Check-in Authentication - FastAPI Application.

This is the main entry point for the check-in authentication service,
providing a FastAPI application with the authentication endpoints.
"""
import logging
from typing import Optional

# Third-party imports
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local application imports
from checkin_auth import __version__
from checkin_auth.api import router as auth_router
from checkin_auth.auth import AuthCoordinator
from checkin_auth.config import settings
from checkin_auth.database import init_db
from checkin_auth.errors import (AccountLockedError, AuthenticationError, AuthError,
                                 InvalidTokenError, RateLimitError, ValidationError)
from checkin_auth.notifications import QueuedNotificationSink
from checkin_auth.sessions import SessionJanitor

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT,
)
logger = logging.getLogger("checkin_auth")


def auth_error_response(exc: AuthError) -> JSONResponse:
    """Map an AuthError to its JSON response."""
    content = {"detail": exc.message}
    headers = {}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if isinstance(exc, AccountLockedError):
        content["minutes_remaining"] = exc.minutes_remaining
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    if isinstance(exc, (AuthenticationError, InvalidTokenError)):
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers or None)


# PUBLIC_INTERFACE
def create_app(coordinator: Optional[AuthCoordinator] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        coordinator: Pre-built coordinator. If None, one is wired from the
            settings on startup together with the cleanup janitor.

    Returns:
        The FastAPI application.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        description=settings.APP_DESCRIPTION,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        debug=settings.DEBUG,
    )
    app.state.coordinator = coordinator
    app.state.janitor = None

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        """Handle errors raised by the authentication core."""
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return auth_error_response(exc)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # Health check endpoint
    @app.get(
        "/health",
        tags=["health"],
        summary="Health check",
        description="Check if the API is running.",
    )
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    # Include authentication router
    app.include_router(auth_router, prefix=settings.API_PREFIX)

    @app.on_event("startup")
    def startup_event():
        """Initialize the database, coordinator and cleanup janitor."""
        if app.state.coordinator is not None:
            return
        logger.info("Initializing check-in authentication API")
        db = init_db(settings.DATABASE_URL)
        app.state.coordinator = AuthCoordinator.from_settings(db, settings)
        app.state.janitor = SessionJanitor(
            app.state.coordinator.cleanup_tasks(),
            settings.SESSION_CLEANUP_INTERVAL_SECONDS,
        )
        app.state.janitor.start()
        logger.info("Check-in authentication API initialized")

    @app.on_event("shutdown")
    def shutdown_event():
        """Stop background workers."""
        logger.info("Shutting down check-in authentication API")
        if app.state.janitor is not None:
            app.state.janitor.stop()
        coordinator = app.state.coordinator
        if coordinator is not None and isinstance(coordinator.notifier, QueuedNotificationSink):
            coordinator.notifier.stop()

    return app


app = create_app()


# Run the application if executed directly
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
