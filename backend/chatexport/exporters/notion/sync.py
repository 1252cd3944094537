"""
Notion Sync Engine.

Writes a parsed backup to Notion either as nested pages or as records of
two linked databases (assistants and topics). Remote calls are strictly
sequential, each write is followed by a fixed delay, and the stop flag is
polled before and after every call and every delay.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, field_validator

from ...config import settings
from ...core.timestamps import parse_timestamp, same_instant, timestamp_range
from ...models.tree import AgentGroup, ParsedBackup, SessionGroup, TopicGroup
from ..markdown import render_topic
from .blocks import chunk_blocks, markdown_to_blocks, sanitize_blocks
from .client import NotionClient
from .properties import (
    date_value,
    normalize_id,
    read_date,
    read_relation_ids,
    relation_value,
    rich_text_value,
    title_text,
    title_value,
)
from .schema import AssistantDatabaseSchema, TopicDatabaseSchema, resolve_schemas

logger = logging.getLogger(__name__)

LogCallback = Callable[[str, str], None]
StopCheck = Callable[[], bool]

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SyncStopped(Exception):
    """The user asked the running sync to stop."""

    def __init__(self, message: str = "Notion sync stopped by user"):
        super().__init__(message)


class NotionSyncConfig(BaseModel):
    """Credentials and targets of one sync run."""
    token: str
    proxy_url: Optional[str] = None
    assistant_database_id: Optional[str] = None
    topic_database_id: Optional[str] = None
    parent_page_id: Optional[str] = None

    @field_validator("token", mode="before")
    @classmethod
    def _strip_token(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("proxy_url", "assistant_database_id", "topic_database_id", "parent_page_id", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def use_databases(self) -> bool:
        return bool(self.assistant_database_id and self.topic_database_id)


@dataclass
class SyncSummary:
    """What a sync run did."""
    mode: str
    created: int = 0
    replaced: int = 0
    skipped: int = 0


def assistant_timestamps(group: AgentGroup) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Earliest and latest instants across the assistant and everything below it."""
    values: List[Any] = []
    if group.agent is not None:
        values.extend([group.agent.created_at, group.agent.updated_at])
    for session_group in group.sessions:
        if session_group.session is not None:
            values.extend([session_group.session.created_at, session_group.session.updated_at])
        for topic_group in session_group.topics:
            if topic_group.topic is not None:
                values.extend([topic_group.topic.created_at, topic_group.topic.updated_at])
            for message in topic_group.messages:
                values.extend([message.created_at, message.updated_at])
    return timestamp_range(values)


def topic_timestamps(session_group: SessionGroup,
                     topic_group: TopicGroup) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Earliest and latest instants of a topic; uses the session's when the topic has none."""
    own: List[Any] = []
    if topic_group.topic is not None:
        own = [topic_group.topic.created_at, topic_group.topic.updated_at]
    if not any(parse_timestamp(v) for v in own) and session_group.session is not None:
        own = [session_group.session.created_at, session_group.session.updated_at]
    values = own + [v for m in topic_group.messages for v in (m.created_at, m.updated_at)]
    return timestamp_range(values)


class NotionSyncEngine:
    """
    Runs one sync of a parsed backup against Notion.

    The engine holds no state between runs apart from the records it
    created or reused during the current one.
    """

    def __init__(
        self,
        client: Any,
        log: Optional[LogCallback] = None,
        should_stop: Optional[StopCheck] = None,
        request_delay: float = 0.2,
        block_batch_size: int = 100,
        text_chunk_size: int = 1800,
        timezone: str = "Asia/Shanghai",
    ):
        """
        Args:
            client: NotionClient or any object with the same coroutine methods
            log: Callback receiving (message, level) with level info/success/warning/error
            should_stop: Returns True once the user asked to stop
            request_delay: Seconds to wait after every write call
            block_batch_size: Max blocks per create/append request
            text_chunk_size: Max characters per text run
            timezone: Zone used for date property values
        """
        self.client = client
        self._log = log
        self._should_stop = should_stop
        self.request_delay = request_delay
        self.block_batch_size = block_batch_size
        self.text_chunk_size = text_chunk_size
        self.timezone = timezone
        self._claimed: set = set()

    def _emit(self, message: str, level: str = "info") -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)
        if self._log:
            self._log(message, level)

    def _check_stop(self) -> None:
        if self._should_stop is not None and self._should_stop():
            raise SyncStopped()

    async def _call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        self._check_stop()
        result = await func(*args, **kwargs)
        self._check_stop()
        return result

    async def _pause(self) -> None:
        self._check_stop()
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)
        self._check_stop()

    async def _write(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        result = await self._call(func, *args, **kwargs)
        await self._pause()
        return result

    async def _create_page(self, parent: Dict[str, Any], properties: Dict[str, Any],
                           blocks: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Create a page; blocks beyond the first batch are appended afterwards."""
        batches = list(chunk_blocks(sanitize_blocks(blocks or [], self.text_chunk_size),
                                    self.block_batch_size))
        page = await self._write(self.client.create_page, parent, properties,
                                 batches[0] if batches else None)
        for batch in batches[1:]:
            await self._write(self.client.append_block_children, page["id"], batch)
        return page

    async def _query_all(self, database_id: str, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            page = await self._call(self.client.query_database, database_id,
                                    filter=filter, start_cursor=cursor)
            results.extend(page.get("results", []))
            if not page.get("has_more") or not page.get("next_cursor"):
                return results
            cursor = page["next_cursor"]

    def _first_unclaimed(self, pages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for page in pages:
            if page.get("archived") or page.get("in_trash"):
                continue
            if normalize_id(page.get("id")) in self._claimed:
                continue
            return page
        return None

    def _claim(self, page_id: str) -> None:
        self._claimed.add(normalize_id(page_id))

    def _topic_markdown(self, group: AgentGroup, session_group: SessionGroup,
                        topic_group: TopicGroup, full: bool) -> List[Dict[str, Any]]:
        markdown = render_topic(
            group.agent, session_group.session, topic_group, group.agent_label,
            include_metadata=full, include_system_prompt=full,
        )
        return markdown_to_blocks(markdown, self.text_chunk_size)

    async def run(self, parsed: ParsedBackup, config: NotionSyncConfig) -> SyncSummary:
        """Sync every assistant group of the backup."""
        self._claimed = set()
        if config.use_databases:
            return await self._sync_databases(
                parsed.groups, config.assistant_database_id, config.topic_database_id
            )
        return await self._sync_pages(parsed.groups, config.parent_page_id)

    # Page mode

    async def _sync_pages(self, groups: List[AgentGroup], parent_page_id: Optional[str]) -> SyncSummary:
        summary = SyncSummary(mode="pages")
        if parent_page_id:
            parent = {"type": "page_id", "page_id": parent_page_id}
        else:
            parent = {"type": "workspace", "workspace": True}

        for group in groups:
            self._emit(f"Creating assistant page: {group.agent_label}")
            assistant_page = await self._create_page(parent, {"title": title_value(group.agent_label)})
            summary.created += 1

            for session_group, topic_group in group.iter_topics():
                self._emit(f"  -> Creating topic page: {topic_group.topic_label}")
                await self._create_page(
                    {"type": "page_id", "page_id": assistant_page["id"]},
                    {"title": title_value(topic_group.topic_label)},
                    self._topic_markdown(group, session_group, topic_group, full=True),
                )
                summary.created += 1
        return summary

    # Linked-record mode

    async def _sync_databases(self, groups: List[AgentGroup], assistant_database_id: str,
                              topic_database_id: str) -> SyncSummary:
        summary = SyncSummary(mode="databases")

        self._emit("Reading Notion database schema")
        assistant_db = await self._call(self.client.retrieve_database, assistant_database_id)
        topic_db = await self._call(self.client.retrieve_database, topic_database_id)
        assistant_schema, topic_schema = resolve_schemas(assistant_db, topic_db)

        if not assistant_schema.updated_property:
            self._emit("Assistant database has no updated date property; existing records will be replaced",
                       "warning")
        if not topic_schema.updated_property:
            self._emit("Topic database has no updated date property; existing records will be replaced",
                       "warning")

        for group in groups:
            record_id, previous_id = await self._sync_assistant(group, assistant_schema, summary)
            for session_group, topic_group in group.iter_topics():
                await self._sync_topic(group, session_group, topic_group, topic_schema,
                                       record_id, previous_id, summary)
        return summary

    def _assistant_properties(self, group: AgentGroup, schema: AssistantDatabaseSchema,
                              created: Optional[datetime], updated: Optional[datetime]) -> Dict[str, Any]:
        properties: Dict[str, Any] = {schema.title_property: title_value(group.agent_label)}
        if schema.prompt_property and group.agent is not None and group.agent.system_role:
            properties[schema.prompt_property] = rich_text_value(group.agent.system_role, self.text_chunk_size)
        if schema.created_property and created is not None:
            properties[schema.created_property] = date_value(created, self.timezone)
        if schema.updated_property and updated is not None:
            properties[schema.updated_property] = date_value(updated, self.timezone)
        return properties

    async def _sync_assistant(self, group: AgentGroup, schema: AssistantDatabaseSchema,
                              summary: SyncSummary) -> Tuple[str, Optional[str]]:
        """
        Create, reuse or replace the assistant record.

        Returns:
            (current record id, id of the record it replaced or None)
        """
        created, updated = assistant_timestamps(group)
        properties = self._assistant_properties(group, schema, created, updated)
        parent = {"database_id": schema.database_id}

        matches = await self._query_all(schema.database_id, {
            "property": schema.title_property,
            "title": {"equals": title_text(group.agent_label)},
        })
        existing = self._first_unclaimed(matches)

        if existing is None:
            self._emit(f"Creating assistant record: {group.agent_label}")
            page = await self._create_page(parent, properties)
            self._claim(page["id"])
            summary.created += 1
            return page["id"], None

        if schema.updated_property and same_instant(read_date(existing, schema.updated_property), updated):
            self._emit(f"Assistant record unchanged, skipping: {group.agent_label}")
            self._claim(existing["id"])
            summary.skipped += 1
            return existing["id"], None

        self._emit(f"Replacing stale assistant record: {group.agent_label}")
        await self._write(self.client.archive_page, existing["id"])
        page = await self._create_page(parent, properties)
        self._claim(page["id"])
        summary.replaced += 1
        return page["id"], existing["id"]

    async def _sync_topic(self, group: AgentGroup, session_group: SessionGroup, topic_group: TopicGroup,
                          schema: TopicDatabaseSchema, assistant_record_id: str,
                          previous_record_id: Optional[str], summary: SyncSummary) -> str:
        created, updated = topic_timestamps(session_group, topic_group)
        label = topic_group.topic_label

        properties: Dict[str, Any] = {
            schema.title_property: title_value(label),
            schema.relation_property: relation_value([assistant_record_id]),
        }
        if schema.session_property:
            properties[schema.session_property] = rich_text_value(session_group.session_label, self.text_chunk_size)
        if schema.created_property and created is not None:
            properties[schema.created_property] = date_value(created, self.timezone)
        if schema.updated_property and updated is not None:
            properties[schema.updated_property] = date_value(updated, self.timezone)

        relation_filter: Dict[str, Any] = {
            "property": schema.relation_property,
            "relation": {"contains": assistant_record_id},
        }
        if previous_record_id:
            relation_filter = {"or": [
                relation_filter,
                {"property": schema.relation_property, "relation": {"contains": previous_record_id}},
            ]}
        matches = await self._query_all(schema.database_id, {"and": [
            {"property": schema.title_property, "title": {"equals": title_text(label)}},
            relation_filter,
        ]})
        existing = self._first_unclaimed(matches)

        if existing is not None:
            linked = {normalize_id(i) for i in read_relation_ids(existing, schema.relation_property)}
            unchanged = (
                schema.updated_property is not None
                and same_instant(read_date(existing, schema.updated_property), updated)
                and normalize_id(assistant_record_id) in linked
            )
            if unchanged:
                self._emit(f"  -> Topic record unchanged, skipping: {label}")
                self._claim(existing["id"])
                summary.skipped += 1
                return existing["id"]

            self._emit(f"  -> Replacing stale topic record: {label}")
            await self._write(self.client.archive_page, existing["id"])
            summary.replaced += 1
        else:
            self._emit(f"  -> Creating topic record: {label}")
            summary.created += 1

        page = await self._create_page(
            {"database_id": schema.database_id},
            properties,
            self._topic_markdown(group, session_group, topic_group, full=False),
        )
        self._claim(page["id"])
        return page["id"]


async def sync_to_notion(
    parsed: ParsedBackup,
    config: NotionSyncConfig,
    log: Optional[LogCallback] = None,
    should_stop: Optional[StopCheck] = None,
    client: Optional[Any] = None,
) -> SyncSummary:
    """
    Sync a parsed backup to Notion.

    Linked-record mode is used when both database ids are configured,
    page mode otherwise.

    Raises:
        ValueError: If the token is missing or there is nothing to export
        SchemaResolutionError: If a mandatory database property is missing
        NotionAPIError: On the first non-success response
        SyncStopped: When should_stop returned True
    """
    if not config.token:
        raise ValueError("Missing Notion token")
    if not parsed.groups:
        raise ValueError("No conversations to export")

    if not config.parent_page_id and settings.notion_parent_page_id:
        config = config.model_copy(update={"parent_page_id": settings.notion_parent_page_id})

    if client is None:
        client = NotionClient(
            token=config.token,
            proxy_url=config.proxy_url,
            api_base=settings.notion_api_base,
            notion_version=settings.notion_version,
            timeout=settings.notion_timeout,
        )

    engine = NotionSyncEngine(
        client,
        log=log,
        should_stop=should_stop,
        request_delay=settings.notion_request_delay,
        block_batch_size=settings.notion_block_batch_size,
        text_chunk_size=settings.notion_text_chunk_size,
        timezone=settings.display_timezone,
    )
    summary = await engine.run(parsed, config)
    logger.info(
        "Notion sync finished",
        extra={"extra_fields": summary.__dict__},
    )
    return summary
