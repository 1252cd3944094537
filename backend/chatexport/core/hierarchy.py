"""
Hierarchy Builder - Turns the flat record arrays of a backup into the
assistant -> session -> topic -> messages tree.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..models.backup import AgentSessionLink, LobeAgent, LobeMessage, LobeSession, LobeTopic
from ..models.tree import AgentGroup, BackupStats, ParsedBackup, SessionGroup, TopicGroup
from .labels import (
    derive_agent_label,
    derive_session_label,
    derive_topic_label,
    derive_unassigned_agent_label,
)

logger = logging.getLogger(__name__)

UNASSIGNED_AGENT_PREFIX = "__unassigned__:"
MISSING_SESSION_ID = "__no_session__"

# Keys of the backup payload and the record type each one holds
PAYLOAD_COLLECTIONS = {
    "agents": LobeAgent,
    "assistants": LobeAgent,
    "sessions": LobeSession,
    "topics": LobeTopic,
    "messages": LobeMessage,
    "agentsToSessions": AgentSessionLink,
}


class BackupParseError(ValueError):
    """The uploaded document is not a usable backup."""


class HierarchyResult:
    """Output of build_hierarchy: the groups, the stats and the id indexes."""

    def __init__(self, groups: List[AgentGroup], stats: BackupStats,
                 agents: Dict[str, LobeAgent], sessions: Dict[str, LobeSession],
                 topics: Dict[str, LobeTopic], messages_by_topic: Dict[str, List[LobeMessage]]):
        self.groups = groups
        self.stats = stats
        self.agents = agents
        self.sessions = sessions
        self.topics = topics
        self.messages_by_topic = messages_by_topic


def _index_by_id(records: Iterable[Any]) -> Dict[str, Any]:
    # Duplicate ids: the last record wins
    return {record.id: record for record in records}


def _build_topic_groups(messages_by_topic: Dict[str, List[LobeMessage]],
                        topics: Dict[str, LobeTopic]) -> Dict[str, TopicGroup]:
    result: Dict[str, TopicGroup] = {}
    for topic_id, messages in messages_by_topic.items():
        topic = topics.get(topic_id)
        result[topic_id] = TopicGroup(
            topic_id=topic_id,
            topic_label=derive_topic_label(topic, topic_id),
            topic=topic,
            messages=sorted(messages, key=lambda m: m.sort_key),
        )
    return result


def _ordered_topics(groups: Iterable[TopicGroup]) -> List[TopicGroup]:
    return sorted(groups, key=lambda g: g.topic.sort_key if g.topic else g.topic_id)


def _session_group(session_id: str, session: Optional[LobeSession],
                   topic_groups: List[TopicGroup]) -> SessionGroup:
    ordered = _ordered_topics(topic_groups)
    return SessionGroup(
        session_id=session_id,
        session_label=derive_session_label(session, session_id, ordered),
        session=session,
        topics=ordered,
    )


def build_hierarchy(
    assistants: List[LobeAgent],
    sessions: List[LobeSession],
    topics: List[LobeTopic],
    messages: List[LobeMessage],
    links: List[AgentSessionLink],
) -> HierarchyResult:
    """
    Build the ordered assistant tree from flat backup records.

    Every topic owning at least one message ends up in exactly one assistant
    group: sessions without a link record, and topics whose session is not in
    the backup, are attached to synthetic "unassigned" assistants.

    Args:
        assistants: Agent records
        sessions: Session records
        topics: Topic records
        messages: Message records (those without a topic id are left out of the tree)
        links: agentsToSessions rows

    Returns:
        HierarchyResult with groups, stats and the id indexes
    """
    agent_index: Dict[str, LobeAgent] = _index_by_id(assistants)
    session_index: Dict[str, LobeSession] = _index_by_id(sessions)
    topic_index: Dict[str, LobeTopic] = _index_by_id(topics)

    messages_by_topic: Dict[str, List[LobeMessage]] = {}
    for message in messages:
        if not message.topic_id:
            continue
        messages_by_topic.setdefault(message.topic_id, []).append(message)

    topic_groups = _build_topic_groups(messages_by_topic, topic_index)

    # Topic groups per owning session id
    topics_by_session: Dict[str, List[TopicGroup]] = {}
    for topic_id, group in topic_groups.items():
        topic = topic_index.get(topic_id)
        session_id = topic.session_id if topic and topic.session_id else MISSING_SESSION_ID
        topics_by_session.setdefault(session_id, []).append(group)

    buckets: Dict[str, List[SessionGroup]] = {}
    agent_labels: Dict[str, str] = {}
    attached: set = set()

    for link in links:
        if not link.agent_id or not link.session_id:
            continue
        if link.session_id in attached:
            logger.debug(f"Session {link.session_id} already linked, ignoring link to {link.agent_id}")
            continue
        session = session_index.get(link.session_id)
        group = _session_group(link.session_id, session, topics_by_session.get(link.session_id, []))
        buckets.setdefault(link.agent_id, []).append(group)
        attached.add(link.session_id)
        if link.agent_id not in agent_labels:
            agent_labels[link.agent_id] = derive_agent_label(
                agent_index.get(link.agent_id), session, fallback_id=link.agent_id
            )

    # Sessions that own topics but were never linked to an assistant
    fallback_session_ids = [sid for sid in session_index if sid in topics_by_session]
    fallback_session_ids += [sid for sid in topics_by_session if sid not in session_index]
    for session_id in fallback_session_ids:
        if session_id in attached:
            continue
        session = session_index.get(session_id)
        fallback_agent_id = f"{UNASSIGNED_AGENT_PREFIX}{session_id}"
        buckets.setdefault(fallback_agent_id, []).append(
            _session_group(session_id, session, topics_by_session[session_id])
        )
        agent_labels[fallback_agent_id] = derive_unassigned_agent_label(session)
        attached.add(session_id)
        logger.debug(f"Session {session_id} has no assistant link, using {fallback_agent_id}")

    groups: List[AgentGroup] = []
    for agent_id, session_groups in buckets.items():
        agent = agent_index.get(agent_id)
        groups.append(AgentGroup(
            agent_id=agent_id,
            agent_label=agent_labels.get(agent_id) or derive_agent_label(agent, fallback_id=agent_id),
            agent=agent,
            sessions=sorted(
                session_groups,
                key=lambda g: g.session.sort_key if g.session else g.session_id,
            ),
        ))

    stats = BackupStats(
        agent_count=len(groups),
        session_count=len(session_index),
        topic_count=len(topic_index),
        message_count=len(messages),
    )

    return HierarchyResult(groups, stats, agent_index, session_index, topic_index, messages_by_topic)


def _load_collection(payload: Mapping[str, Any], key: str) -> List[Any]:
    items = payload.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise BackupParseError(f"Invalid backup structure: 'data.{key}' must be an array")
    model = PAYLOAD_COLLECTIONS[key]
    records = []
    for position, item in enumerate(items):
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            raise BackupParseError(
                f"Invalid backup structure: data.{key}[{position}] is malformed: "
                f"{e.errors()[0].get('msg', 'invalid record')}"
            ) from e
    return records


def parse_backup(
    document: Union[str, bytes, Mapping[str, Any]],
    source_file_name: Optional[str] = None,
) -> ParsedBackup:
    """
    Parse a LobeChat backup export.

    Args:
        document: JSON text (or bytes), or an already decoded mapping
        source_file_name: Name of the uploaded file, shown in the index

    Returns:
        ParsedBackup with the assistant tree and stats

    Raises:
        BackupParseError: If the JSON is malformed or the data payload is missing
    """
    if isinstance(document, (str, bytes)):
        try:
            raw = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackupParseError(f"Unable to parse JSON: {e}") from e
    else:
        raw = document

    if not isinstance(raw, Mapping):
        raise BackupParseError("Invalid backup structure: top level must be a JSON object")

    payload = raw.get("data")
    if payload is None:
        raise BackupParseError("Invalid backup structure: missing 'data' field")
    if not isinstance(payload, Mapping):
        raise BackupParseError("Invalid backup structure: 'data' must be an object")

    result = build_hierarchy(
        # Newer exports name the collection "assistants"
        assistants=_load_collection(payload, "agents") + _load_collection(payload, "assistants"),
        sessions=_load_collection(payload, "sessions"),
        topics=_load_collection(payload, "topics"),
        messages=_load_collection(payload, "messages"),
        links=_load_collection(payload, "agentsToSessions"),
    )

    logger.info(
        f"Parsed backup {source_file_name or '<inline>'}",
        extra={"extra_fields": result.stats.to_dict()},
    )

    return ParsedBackup(
        agents=result.agents,
        sessions=result.sessions,
        topics=result.topics,
        messages_by_topic=result.messages_by_topic,
        groups=result.groups,
        stats=result.stats,
        source_file_name=source_file_name,
        raw=raw,
    )
