"""
Schema discovery for linked-record mode.

The two target databases are user-made, so property names are unknown
until sync time. Each needed property is resolved once from the raw schema
into a small typed description; the raw schema is not passed further.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from .properties import normalize_id

logger = logging.getLogger(__name__)

SESSION_PROPERTY_NAMES = ["session", "sessionlabel", "sessiontitle", "会话"]
PROMPT_PROPERTY_NAMES = ["prompt", "systemprompt", "systemrole", "提示词", "系统提示词"]
CREATED_PROPERTY_NAMES = ["created", "createdat", "createdtime", "createddate", "创建时间", "创建日期"]
UPDATED_PROPERTY_NAMES = [
    "updated", "updatedat", "updatedtime", "lastupdated", "lasteditedtime", "modified", "更新时间", "更新日期",
]


class SchemaResolutionError(ValueError):
    """A mandatory property is missing from a target database."""


@dataclass(frozen=True)
class AssistantDatabaseSchema:
    """Resolved property names of the assistant database."""
    database_id: str
    title_property: str
    prompt_property: Optional[str] = None
    created_property: Optional[str] = None
    updated_property: Optional[str] = None


@dataclass(frozen=True)
class TopicDatabaseSchema:
    """Resolved property names of the topic database."""
    database_id: str
    title_property: str
    relation_property: str
    session_property: Optional[str] = None
    created_property: Optional[str] = None
    updated_property: Optional[str] = None


def _normalize_name(name: str) -> str:
    return "".join(name.split()).lower()


def _database_name(database: Dict[str, Any]) -> str:
    title = database.get("title") or []
    if title and isinstance(title[0], dict) and title[0].get("plain_text"):
        return title[0]["plain_text"]
    return database.get("id", "<unknown>")


def _properties_of_type(database: Dict[str, Any], prop_type: str) -> Iterable[Tuple[str, Dict[str, Any]]]:
    for name, prop in (database.get("properties") or {}).items():
        if isinstance(prop, dict) and prop.get("type") == prop_type:
            yield name, prop


def find_title_property(database: Dict[str, Any]) -> str:
    for name, _ in _properties_of_type(database, "title"):
        return name
    raise SchemaResolutionError(
        f"Database {_database_name(database)} does not expose a title property"
    )


def find_relation_property(topic_db: Dict[str, Any], assistant_db_id: str) -> str:
    target = normalize_id(assistant_db_id)
    for name, prop in _properties_of_type(topic_db, "relation"):
        relation = prop.get("relation") or {}
        if normalize_id(relation.get("database_id")) == target:
            return name
    raise SchemaResolutionError(
        f"Topic database {_database_name(topic_db)} does not contain a relation property "
        f"pointing to the assistant database"
    )


def find_named_property(database: Dict[str, Any], prop_type: str,
                        candidates: Iterable[str], hint: Optional[str] = None) -> Optional[str]:
    """
    Find a property of the given type by name.

    Exact matches against the candidate names (case and whitespace
    insensitive) win, in candidate order; otherwise the first property whose
    normalized name contains the hint.
    """
    by_name = {_normalize_name(name): name for name, _ in _properties_of_type(database, prop_type)}
    for candidate in candidates:
        if candidate in by_name:
            return by_name[candidate]
    if hint:
        for normalized, name in by_name.items():
            if hint in normalized:
                return name
    return None


def resolve_schemas(assistant_db: Dict[str, Any],
                    topic_db: Dict[str, Any]) -> Tuple[AssistantDatabaseSchema, TopicDatabaseSchema]:
    """
    Resolve the properties used by the sync from both database schemas.

    Raises:
        SchemaResolutionError: If a title or the topic->assistant relation is missing
    """
    assistant_schema = AssistantDatabaseSchema(
        database_id=assistant_db["id"],
        title_property=find_title_property(assistant_db),
        prompt_property=find_named_property(assistant_db, "rich_text", PROMPT_PROPERTY_NAMES),
        created_property=find_named_property(assistant_db, "date", CREATED_PROPERTY_NAMES, hint="created"),
        updated_property=find_named_property(assistant_db, "date", UPDATED_PROPERTY_NAMES, hint="updated"),
    )
    topic_schema = TopicDatabaseSchema(
        database_id=topic_db["id"],
        title_property=find_title_property(topic_db),
        relation_property=find_relation_property(topic_db, assistant_db["id"]),
        session_property=find_named_property(topic_db, "rich_text", SESSION_PROPERTY_NAMES),
        created_property=find_named_property(topic_db, "date", CREATED_PROPERTY_NAMES, hint="created"),
        updated_property=find_named_property(topic_db, "date", UPDATED_PROPERTY_NAMES, hint="updated"),
    )
    logger.info(
        "Resolved Notion database schemas",
        extra={"extra_fields": {
            "assistant_schema": assistant_schema.__dict__,
            "topic_schema": topic_schema.__dict__,
        }}
    )
    return assistant_schema, topic_schema
