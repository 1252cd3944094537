"""API module."""

from .backup import router as backup_router
from .export import router as export_router
from .proxy import router as relay_router

__all__ = ['backup_router', 'export_router', 'relay_router']
