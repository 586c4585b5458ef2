"""TaskGate main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskgate import __version__
from taskgate.api import router
from taskgate.config import settings
from taskgate.db.base import close_db, get_session, init_db
from taskgate.engine.core import TaskGateEngine
from taskgate.models.commands import field_errors
from taskgate.notifications.gateway import get_notification_gateway

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("taskgate")


async def bootstrap_admin() -> None:
    """Create the configured first SuperAdmin if it does not exist yet."""
    if not (settings.bootstrap_admin_email and settings.bootstrap_admin_password):
        return
    async with get_session() as session:
        engine = TaskGateEngine(session)
        created = await engine.users.bootstrap_super_admin(
            settings.bootstrap_admin_email,
            settings.bootstrap_admin_password,
            settings.bootstrap_admin_name,
        )
    if created:
        logger.info(f"Super admin {created.email} created")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting TaskGate server...")
    logger.info(f"Environment: {settings.env.value}")

    await init_db()
    logger.info("Database initialized")

    await bootstrap_admin()

    yield

    logger.info("Shutting down TaskGate server...")
    await get_notification_gateway().close()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="TaskGate",
    description="Role-scoped task assignment and approval with an audit trail",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400 with per-field messages."""
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "VALIDATION_FAILED",
                "message": "Validation failed",
                "errors": field_errors(exc),
            }
        },
    )


# Add CORS middleware (explicit allowlist, no wildcards with credentials)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)

# Include API router
app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "taskgate.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
