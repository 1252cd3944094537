"""
Label derivation for assistants, sessions and topics.

Backups often lack titles, so every entity gets a display label from an
ordered fallback chain. Whitespace-only values never count as a label.
"""

import re
from typing import Iterable, List, Optional, Sequence

from ..models.backup import LobeAgent, LobeMessage, LobeSession, LobeTopic
from ..models.tree import TopicGroup
from .timestamps import parse_timestamp

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
SNIPPET_MAX_LENGTH = 48
UNASSIGNED_AGENT_LABEL = "unassigned assistant"


def derive_label(candidates: Iterable[Optional[str]], fallback_id: str) -> str:
    """Return the first candidate that is non-empty after trimming, trimmed."""
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return fallback_id


def derive_agent_label(agent: Optional[LobeAgent], session: Optional[LobeSession] = None,
                       fallback_id: Optional[str] = None) -> str:
    """Assistant label: title, slug, description, then session title/slug, then id."""
    candidates = []
    if agent is not None:
        candidates.extend([agent.title, agent.slug, agent.description])
    if session is not None:
        candidates.extend([session.title, session.slug])
    fallback = fallback_id or (agent.id if agent else None) or (session.id if session else None)
    return derive_label(candidates, fallback or "assistant")


def derive_topic_label(topic: Optional[LobeTopic], topic_id: str) -> str:
    """Topic label: title, else Topic_ plus the last six characters of the id."""
    return derive_label([topic.title if topic else None], f"Topic_{topic_id[-6:]}")


def message_snippet(messages: Sequence[LobeMessage]) -> Optional[str]:
    """First line of the earliest user/assistant message with text content."""
    for message in sorted(messages, key=lambda m: m.sort_key):
        if message.role not in ("user", "assistant"):
            continue
        if not isinstance(message.content, str):
            continue
        stripped = message.content.strip()
        if not stripped:
            continue
        line = stripped.split("\n")[0]
        if len(line) > SNIPPET_MAX_LENGTH:
            return f"{line[:SNIPPET_MAX_LENGTH].strip()}…"
        return line
    return None


def _creation_date(session: Optional[LobeSession]) -> Optional[str]:
    if session is None or not session.created_at:
        return None
    if ISO_DATE.match(session.created_at):
        return session.created_at[:10]
    # Epoch milliseconds
    parsed = parse_timestamp(session.created_at)
    return parsed.date().isoformat() if parsed else None


def derive_session_label(session: Optional[LobeSession], session_id: str,
                         topic_groups: List[TopicGroup]) -> str:
    """
    Build the session label: its topics first, then its own title/slug/description, then the id.

    Args:
        session: Session record, None when the backup lacks it
        session_id: Id used for the fallback labels
        topic_groups: The session's topic groups in ascending order

    Returns:
        Label, prefixed with the session creation date when known
    """
    topic_title: Optional[str] = None
    snippet: Optional[str] = None

    for group in topic_groups:
        if topic_title is None and group.topic is not None:
            title = group.topic.title
            if title and title.strip():
                topic_title = title
        if snippet is None:
            snippet = message_snippet(group.messages)
        if topic_title and snippet:
            break

    candidates = [topic_title, snippet]
    if session is not None:
        candidates.extend([session.title, session.slug, session.description])
    if session_id.startswith("ssn_"):
        candidates.append("session_" + session_id[len("ssn_"):])
    candidates.append(session_id)

    chosen = derive_label(candidates, "session")

    date_prefix = _creation_date(session)
    if date_prefix and not chosen.startswith(date_prefix):
        return f"{date_prefix} {chosen}"
    return chosen


def derive_unassigned_agent_label(session: Optional[LobeSession]) -> str:
    """Label of the synthetic assistant holding an unlinked session."""
    if session is None:
        return UNASSIGNED_AGENT_LABEL
    return derive_label([session.title, session.slug], UNASSIGNED_AGENT_LABEL)
