"""
Markdown Exporter - Renders topics as Markdown documents and the whole tree
as a directory layout with an index file.
"""

import io
import json
import logging
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Set

from ..models.backup import LobeAgent, LobeMessage, LobeSession
from ..models.tree import ParsedBackup, TopicGroup
from ..storage.interface import StorageInterface

logger = logging.getLogger(__name__)

INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]+')
WHITESPACE = re.compile(r"\s+")
BACKTICK_RUN = re.compile(r"`+")
MAX_FILENAME_LENGTH = 80
INDEX_PATH = "index.md"
NO_CONTENT = "_No content provided._"


@dataclass
class MarkdownFile:
    """One file of a Markdown export."""
    path: str
    content: str


@dataclass
class MarkdownExport:
    """All files of a Markdown export, index included."""
    files: List[MarkdownFile] = field(default_factory=list)
    index_path: str = INDEX_PATH


@dataclass
class MarkdownArchive:
    """Zip archive built from a Markdown export."""
    content: bytes
    file_name: str
    file_count: int


def safe_filename(text: Optional[str], fallback: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Convert a label into a filesystem-safe name.

    Reserved characters and whitespace runs become single spaces, the result
    is cut to max_length and spaces are turned into underscores.
    """
    default = fallback or "untitled"
    value = (text if text is not None else default).strip()
    if not value:
        value = default
    value = INVALID_FILENAME_CHARS.sub(" ", value)
    value = WHITESPACE.sub(" ", value).strip()
    if not value:
        value = default
    if len(value) > max_length:
        value = value[:max_length].strip()
    return WHITESPACE.sub("_", value)


def ensure_unique_name(name: str, used: Set[str]) -> str:
    """Return name, or name_1, name_2, ... whichever is not in used yet, and record it."""
    if name not in used:
        used.add(name)
        return name
    counter = 1
    candidate = f"{name}_{counter}"
    while candidate in used:
        counter += 1
        candidate = f"{name}_{counter}"
    used.add(candidate)
    return candidate


def _metadata_block(title: str, metadata: Dict[str, Optional[str]]) -> List[str]:
    entries = [(key, value) for key, value in metadata.items() if value]
    if not entries:
        return []
    lines = [f"## {title}", ""]
    for key, value in entries:
        lines.append(f"- **{key}**: {value}")
    lines.append("")
    return lines


def code_fence(text: str) -> str:
    """Backtick fence longer than any backtick run inside text, at least three long."""
    longest = max((len(run) for run in BACKTICK_RUN.findall(text)), default=0)
    return "`" * max(3, longest + 1)


def fenced(text: str, language: str = "") -> List[str]:
    fence = code_fence(text)
    return [f"{fence}{language}", text, fence, ""]


def _json_block(value: Any) -> List[str]:
    return fenced(json.dumps(value, indent=2, ensure_ascii=False, default=str), "json")


def format_content(raw: Any) -> List[str]:
    """Markdown lines for a message content value."""
    if raw is None or raw == "":
        return [NO_CONTENT, ""]
    if not isinstance(raw, str):
        return _json_block(raw)

    trimmed = raw.strip()
    if trimmed.startswith("{") or trimmed.startswith("["):
        try:
            return _json_block(json.loads(raw))
        except json.JSONDecodeError:
            pass
    if "\n" in raw:
        return fenced(raw)
    return [raw, ""]


def _role_title(role: str) -> str:
    return role[:1].upper() + role[1:] if role else "Unknown"


def format_messages(messages: List[LobeMessage]) -> List[str]:
    lines = ["## Messages", ""]
    for message in sorted(messages, key=lambda m: m.sort_key):
        timestamp = message.created_at or message.updated_at or "unknown time"
        lines.extend([f"### {timestamp} - {_role_title(message.role)}", ""])
        lines.extend(format_content(message.content))
        if message.reasoning:
            lines.extend(["**Reasoning**", ""])
            lines.extend(format_content(message.reasoning))
        if message.search:
            lines.extend(["**Search Context**", ""])
            lines.extend(format_content(message.search))
    return lines


def render_topic(
    agent: Optional[LobeAgent],
    session: Optional[LobeSession],
    topic_group: TopicGroup,
    agent_label: str,
    include_metadata: bool = True,
    include_system_prompt: bool = True,
) -> str:
    """
    Render one topic as a Markdown document.

    Args:
        agent: Owning assistant record, if any
        session: Owning session record, if any
        topic_group: Topic with its messages, rendered oldest first
        agent_label: Display label of the assistant
        include_metadata: Add Session/Topic/Assistant sections
        include_system_prompt: Add the assistant's system prompt

    Returns:
        Markdown text ending with a single newline
    """
    topic = topic_group.topic
    lines = [f"# {topic_group.topic_label}", ""]

    if include_metadata:
        lines.extend(_metadata_block("Session", {
            "Session Title": session.title if session else None,
            "Session Slug": session.slug if session else None,
            "Session ID": session.id if session else None,
            "Session Created": session.created_at if session else None,
            "Session Updated": session.updated_at if session else None,
        }))
        lines.extend(_metadata_block("Topic", {
            "Topic ID": topic.id if topic else topic_group.topic_id,
            "Topic Created": topic.created_at if topic else None,
            "Topic Updated": topic.updated_at if topic else None,
        }))
        if agent is not None:
            lines.extend(_metadata_block("Assistant", {
                "Assistant Title": agent.title or agent.slug or agent_label,
                "Assistant ID": agent.id,
                "Model": agent.model,
                "Provider": agent.provider,
            }))

    if include_system_prompt and agent is not None and agent.system_role:
        lines.extend(["## System Prompt", ""])
        lines.extend(fenced(agent.system_role))

    lines.extend(format_messages(topic_group.messages))
    return "\n".join(lines).rstrip() + "\n"


def render_tree(parsed: ParsedBackup) -> MarkdownExport:
    """
    Lay the whole tree out as <assistant>/<session>/<topic>.md files plus index.md.

    Names are made unique among siblings of the same directory.
    """
    files: List[MarkdownFile] = []
    index_lines = ["# LobeChat Conversation Index", ""]
    if parsed.source_file_name:
        index_lines.extend([f"- **Source file**: `{parsed.source_file_name}`", ""])

    used_agent_dirs: Set[str] = set()
    for group in parsed.groups:
        agent_dir = ensure_unique_name(safe_filename(group.agent_label, group.agent_id), used_agent_dirs)
        used_session_dirs: Set[str] = set()

        for session_group in group.sessions:
            session_dir = ensure_unique_name(
                safe_filename(session_group.session_label, session_group.session_id), used_session_dirs
            )
            used_topic_names: Set[str] = set()

            for topic_group in session_group.topics:
                topic_name = ensure_unique_name(
                    safe_filename(topic_group.topic_label, topic_group.topic_id), used_topic_names
                )
                path = f"{agent_dir}/{session_dir}/{topic_name}.md"
                files.append(MarkdownFile(
                    path=path,
                    content=render_topic(group.agent, session_group.session, topic_group, group.agent_label),
                ))
                index_lines.append(
                    f"- [{group.agent_label} / {session_group.session_label} / {topic_group.topic_label}]"
                    f"({path}) - {len(topic_group.messages)} messages"
                )

    files.append(MarkdownFile(path=INDEX_PATH, content="\n".join(index_lines).rstrip() + "\n"))
    return MarkdownExport(files=files, index_path=INDEX_PATH)


def build_markdown_archive(parsed: ParsedBackup) -> MarkdownArchive:
    """Zip the Markdown export in memory."""
    export = render_tree(parsed)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for item in export.files:
            archive.writestr(item.path, item.content)

    stem = PurePosixPath(parsed.source_file_name).stem if parsed.source_file_name else "lobechat-export"
    logger.info(f"Built Markdown archive with {len(export.files)} files")
    return MarkdownArchive(
        content=buffer.getvalue(),
        file_name=f"{stem}-markdown.zip",
        file_count=len(export.files),
    )


async def save_markdown_export(storage: StorageInterface, export: MarkdownExport, prefix: str = "") -> List[str]:
    """
    Write every file of the export through the storage layer.

    Returns:
        Relative paths written, prefix included
    """
    written = []
    for item in export.files:
        path = f"{prefix.rstrip('/')}/{item.path}" if prefix else item.path
        await storage.save(path, item.content)
        written.append(path)
    logger.info(f"Saved {len(written)} Markdown files under '{prefix or '.'}'")
    return written
