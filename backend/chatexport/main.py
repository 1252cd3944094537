"""
LobeChat Exporter - FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import backup_router, export_router, relay_router
from .config import settings
from .core.logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .services import get_job_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup; stop running sync jobs on shutdown."""
    setup_logging(settings)
    logger.info(
        f"Starting {settings.app_name} v{settings.app_version}",
        extra={"extra_fields": {
            "export_storage_path": settings.export_storage_path,
            "notion_api_base": settings.notion_api_base,
            "notion_version": settings.notion_version,
            "relay_prefix": settings.relay_prefix,
        }}
    )
    yield
    await get_job_manager().shutdown()
    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Convert LobeChat backups into Markdown archives or Notion pages and databases",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Registered after CORS so it wraps it
if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

app.include_router(backup_router)
app.include_router(export_router)
app.include_router(relay_router)


@app.get("/")
async def root():
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.app_version}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("chatexport.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
