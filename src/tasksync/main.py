# src/tasksync/main.py
"""Main entry point for the tasksync application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasksync.api.errors import install_error_handlers
from tasksync.api.v1 import sync_router, tasks_router
from tasksync.core.settings import settings
from tasksync.db.session import create_tables
from tasksync.db.time import utcnow
from tasksync.services.remote import get_remote_client

# Initialize FastAPI app
app = FastAPI(
    title="tasksync API",
    description="Offline-first task store synchronized through a durable outbox",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

install_error_handlers(app)

# Include API routers
app.include_router(tasks_router, prefix="/api/v1")
app.include_router(sync_router, prefix="/api/v1")


def configure_logging(level: str) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging(settings.log_level)
    create_tables()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_remote_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok", "timestamp": utcnow().isoformat()}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tasksync.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
