"""FastAPI application entry point for the crudworkflow API."""

import asyncio
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from crudworkflow_api.api import v1
from crudworkflow_api.dependencies import get_gateway

# Initialize structured logger
logger = structlog.get_logger(__name__)


def get_shutdown_timeout() -> int:
    """Get shutdown timeout from environment variable.

    Returns:
        Shutdown timeout in seconds (default: 30).
    """
    return int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))


async def cleanup_resources() -> None:
    """Close the gateway's store connections, if a gateway was created."""
    logger.info("shutdown_started", message="Beginning graceful shutdown")

    if get_gateway.cache_info().currsize:
        try:
            await get_gateway().close()
            logger.info("shutdown_resource_closed", resource="workflow_store", status="success")
        except Exception as e:
            logger.warning(
                "shutdown_resource_error",
                resource="workflow_store",
                error=str(e),
                status="warning",
            )

    logger.info("shutdown_completed", message="Graceful shutdown completed successfully")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI lifespan context manager for startup and shutdown.

    Yields:
        None: Application runs between startup and shutdown.
    """
    logger.info("application_startup", message="crudworkflow API starting up")
    shutdown_timeout = get_shutdown_timeout()

    yield

    logger.info("shutdown_signal_received", message="Shutdown signal received")
    try:
        await asyncio.wait_for(cleanup_resources(), timeout=shutdown_timeout)
    except TimeoutError:
        logger.warning(
            "shutdown_timeout_exceeded",
            timeout_seconds=shutdown_timeout,
            message=f"Shutdown timeout ({shutdown_timeout}s) exceeded",
        )


app = FastAPI(
    title="crudworkflow API",
    version="0.1.0",
    description="HTTP surface for workflow transitions and their audit trail",
    lifespan=lifespan,
)

app.include_router(v1.router, prefix="/api/v1")
