"""Exporters - Markdown files and Notion sync."""

from .markdown import render_topic, render_tree, build_markdown_archive, save_markdown_export
from .notion import sync_to_notion, NotionSyncConfig, SyncStopped

__all__ = [
    'render_topic',
    'render_tree',
    'build_markdown_archive',
    'save_markdown_export',
    'sync_to_notion',
    'NotionSyncConfig',
    'SyncStopped',
]
