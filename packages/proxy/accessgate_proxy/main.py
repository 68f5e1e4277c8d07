"""FastAPI application entry point for the AccessGate proxy."""

import asyncio
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from accessgate import __version__
from accessgate.domain.components.device_authorizer import (
    DeviceLimitReachedError,
    DeviceNotAuthorizedError,
    DeviceNotPendingError,
)
from accessgate.domain.components.key_administrator import (
    KeyAlreadyExistsError,
    KeyNotFoundError,
)
from accessgate.domain.interfaces.access_key_store import StateStoreError
from accessgate.infrastructure.state_store.mongo_store import MongoAccessKeyStore
from accessgate.infrastructure.utils.validation import ValidationError
from accessgate_proxy.api import access, management
from accessgate_proxy.dependencies import get_access_key_store, get_notification_sink
from accessgate_proxy.middleware.auth import ManagementAPIAuthMiddleware

logger = structlog.get_logger(__name__)

# Domain errors raised by admin and device operations, by HTTP status.
_ERROR_STATUS: dict[type[Exception], int] = {
    KeyNotFoundError: status.HTTP_404_NOT_FOUND,
    DeviceNotPendingError: status.HTTP_404_NOT_FOUND,
    DeviceNotAuthorizedError: status.HTTP_404_NOT_FOUND,
    KeyAlreadyExistsError: status.HTTP_409_CONFLICT,
    DeviceLimitReachedError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_400_BAD_REQUEST,
}


def get_shutdown_timeout() -> int:
    """Get shutdown timeout in seconds from SHUTDOWN_TIMEOUT_SECONDS (default: 30)."""
    return int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))


async def cleanup_resources() -> None:
    """Close the access key store and the notification sink."""
    logger.info("shutdown_started", message="Beginning graceful shutdown")

    resources: list[tuple[str, Any]] = [
        ("access_key_store", get_access_key_store()),
        ("notification_sink", get_notification_sink()),
    ]
    for name, resource in resources:
        try:
            await resource.close()
            logger.info("shutdown_resource_closed", resource=name, status="success")
        except Exception as e:
            logger.warning(
                "shutdown_resource_error",
                resource=name,
                error=str(e),
                status="warning",
            )

    logger.info("shutdown_completed", message="Graceful shutdown completed successfully")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize the store on startup and release resources on shutdown."""
    logger.info("application_startup", message="AccessGate proxy starting up")
    store = get_access_key_store()
    if isinstance(store, MongoAccessKeyStore):
        await store.initialize()
    logger.info("access_key_store_ready", store=type(store).__name__)

    shutdown_timeout = get_shutdown_timeout()
    yield

    logger.info("shutdown_signal_received", message="Shutdown signal received, starting graceful shutdown")
    try:
        await asyncio.wait_for(cleanup_resources(), timeout=shutdown_timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "shutdown_timeout_exceeded",
            timeout_seconds=shutdown_timeout,
            message=f"Shutdown timeout ({shutdown_timeout}s) exceeded, forcing exit",
        )


app = FastAPI(
    title="AccessGate",
    version=__version__,
    description="Access key validation, device authorization and key administration",
    lifespan=lifespan,
)

app.add_middleware(ManagementAPIAuthMiddleware)


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = next(
        code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)
    )
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def state_store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "state_store_error",
        endpoint=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error."},
    )


for _error_type in _ERROR_STATUS:
    app.add_exception_handler(_error_type, domain_error_handler)
app.add_exception_handler(StateStoreError, state_store_error_handler)

app.include_router(access.router, prefix="/api")
app.include_router(management.router, prefix="/api/v1")


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness and store connectivity check."""
    store = get_access_key_store()
    healthy = True
    if isinstance(store, MongoAccessKeyStore):
        healthy = await store.check_connection()
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "store": type(store).__name__,
            "version": __version__,
        },
    )
