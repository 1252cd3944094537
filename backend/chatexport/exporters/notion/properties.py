"""
Builders and readers for Notion page property values.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ...core.timestamps import format_local_datetime, parse_timestamp
from .blocks import MAX_RICH_TEXT_RUNS, TEXT_CHUNK_SIZE, chunk_text, rich_text, text_run


def title_text(text: str) -> str:
    """
    The part of a label stored as a page title.

    Titles are a single text run, so long labels are cut to one chunk.
    Lookups by title must compare against this value, not the full label.
    """
    return chunk_text(text, TEXT_CHUNK_SIZE)[0]


def title_value(text: str) -> Dict[str, Any]:
    return {"title": [text_run(title_text(text))]}


def rich_text_value(text: str, size: int = TEXT_CHUNK_SIZE) -> Dict[str, Any]:
    return {"rich_text": rich_text(text, size)[:MAX_RICH_TEXT_RUNS]}


def relation_value(page_ids: List[str]) -> Dict[str, Any]:
    return {"relation": [{"id": page_id} for page_id in page_ids]}


def date_value(value: datetime, tz_name: str) -> Dict[str, Any]:
    """Date property holding the local wall-clock time plus its zone name."""
    return {"date": {"start": format_local_datetime(value, tz_name), "time_zone": tz_name}}


def read_date(page: Dict[str, Any], property_name: Optional[str]) -> Optional[datetime]:
    """Start instant of a date property on a page, None when unset."""
    if not property_name:
        return None
    prop = page.get("properties", {}).get(property_name) or {}
    date = prop.get("date") or {}
    return parse_timestamp(date.get("start"), default_tz=date.get("time_zone"))


def read_relation_ids(page: Dict[str, Any], property_name: str) -> List[str]:
    prop = page.get("properties", {}).get(property_name) or {}
    return [item.get("id") for item in prop.get("relation") or [] if item.get("id")]


def normalize_id(value: Optional[str]) -> str:
    """Notion ids compare equal with or without dashes."""
    return (value or "").replace("-", "").lower()
