"""Startup script for the crudworkflow API."""

import os

import uvicorn


def main() -> None:
    """Start the API server with graceful shutdown configuration."""
    host = os.getenv("CRUDWORKFLOW_HOST", "0.0.0.0")
    port = int(os.getenv("CRUDWORKFLOW_PORT", "8000"))
    reload = os.getenv("CRUDWORKFLOW_RELOAD", "false").lower() == "true"
    shutdown_timeout = int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "30"))

    config = uvicorn.Config(
        "crudworkflow_api.main:app",
        host=host,
        port=port,
        reload=reload,
        timeout_graceful_shutdown=shutdown_timeout,
        log_level=os.getenv("CRUDWORKFLOW_LOG_LEVEL", "info").lower(),
    )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
