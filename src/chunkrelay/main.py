"""Main application entrypoint for the chunk relay service."""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chunkrelay.api.v1 import routes_health
from chunkrelay.api.v1.routes_relay import router as relay_router
from chunkrelay.core.config import settings
from chunkrelay.core.logging import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(relay_router)

    return app


# Export app instance for ASGI servers
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port)
