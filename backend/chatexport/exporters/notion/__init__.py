"""Notion export - API client, block conversion, schema discovery and sync engine."""

from .client import NotionClient, NotionAPIError, NotionUnreachableError
from .schema import SchemaResolutionError, resolve_schemas
from .sync import NotionSyncConfig, NotionSyncEngine, SyncStopped, SyncSummary, sync_to_notion

__all__ = [
    'NotionClient',
    'NotionAPIError',
    'NotionUnreachableError',
    'SchemaResolutionError',
    'resolve_schemas',
    'NotionSyncConfig',
    'NotionSyncEngine',
    'SyncStopped',
    'SyncSummary',
    'sync_to_notion',
]
