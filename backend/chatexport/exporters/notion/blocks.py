"""
Markdown to Notion block conversion and block validation.

Notion rejects text runs above 2000 UTF-16 code units, rich text arrays above 100
runs and more than 100 children per request; everything sent by the sync
engine goes through sanitize_blocks and chunk_blocks first.
"""

import logging
import re
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

TEXT_CHUNK_SIZE = 1800
MAX_RICH_TEXT_RUNS = 100
BLOCK_BATCH_SIZE = 100

TEXT_BLOCK_TYPES = {
    "paragraph",
    "heading_1",
    "heading_2",
    "heading_3",
    "bulleted_list_item",
    "numbered_list_item",
    "quote",
    "code",
    "to_do",
    "toggle",
    "callout",
}
SUPPORTED_BLOCK_TYPES = TEXT_BLOCK_TYPES | {"divider"}

# Subset of the languages accepted by the code block
CODE_LANGUAGES = {
    "bash", "c", "c++", "c#", "css", "diff", "docker", "go", "graphql", "html", "java",
    "javascript", "json", "kotlin", "markdown", "php", "plain text", "python", "ruby",
    "rust", "shell", "sql", "swift", "typescript", "xml", "yaml",
}
LANGUAGE_ALIASES = {
    "": "plain text",
    "text": "plain text",
    "txt": "plain text",
    "js": "javascript",
    "ts": "typescript",
    "py": "python",
    "sh": "shell",
    "yml": "yaml",
    "md": "markdown",
    "cpp": "c++",
    "csharp": "c#",
}

FENCE_PATTERN = re.compile(r"^(`{3,})(.*)$")
HEADING_PATTERN = re.compile(r"^(#{1,3})\s+(.*)$")
BULLET_PATTERN = re.compile(r"^[-*]\s+(.*)$")
NUMBERED_PATTERN = re.compile(r"^\d+[.)]\s+(.*)$")
INLINE_PATTERN = re.compile(r"(\*\*[^*\n]+\*\*|`[^`\n]+`)")


def utf16_length(text: str) -> int:
    """Length in UTF-16 code units, the unit Notion counts text limits in."""
    return len(text.encode("utf-16-le", "surrogatepass")) // 2


def chunk_text(text: str, size: int = TEXT_CHUNK_SIZE) -> List[str]:
    """
    Split text into pieces of at most size UTF-16 code units.

    Characters outside the Basic Multilingual Plane count as two units and
    are never split.
    """
    if not text:
        return [""]
    if utf16_length(text) <= size:
        return [text]

    pieces = []
    start = 0
    units = 0
    for index, char in enumerate(text):
        width = 2 if ord(char) > 0xFFFF else 1
        if units + width > size and index > start:
            pieces.append(text[start:index])
            start = index
            units = 0
        units += width
    pieces.append(text[start:])
    return pieces


def chunk_blocks(blocks: List[Dict[str, Any]], size: int = BLOCK_BATCH_SIZE) -> Iterator[List[Dict[str, Any]]]:
    """Yield consecutive batches of at most size blocks."""
    for i in range(0, len(blocks), size):
        yield blocks[i:i + size]


def text_run(content: str, bold: bool = False, code: bool = False) -> Dict[str, Any]:
    run: Dict[str, Any] = {"type": "text", "text": {"content": content}}
    if bold or code:
        run["annotations"] = {"bold": bold, "code": code}
    return run


def rich_text(text: str, size: int = TEXT_CHUNK_SIZE) -> List[Dict[str, Any]]:
    """Plain text as a list of text runs of at most size UTF-16 code units each."""
    return [text_run(piece) for piece in chunk_text(text, size)]


def inline_rich_text(text: str, size: int = TEXT_CHUNK_SIZE) -> List[Dict[str, Any]]:
    """Rich text with **bold** and `code` spans turned into annotations."""
    runs: List[Dict[str, Any]] = []
    for part in INLINE_PATTERN.split(text):
        if not part:
            continue
        if part.startswith("**") and part.endswith("**") and len(part) > 4:
            runs.extend(_annotated(part[2:-2], size, bold=True))
        elif part.startswith("`") and part.endswith("`") and len(part) > 2:
            runs.extend(_annotated(part[1:-1], size, code=True))
        else:
            runs.extend(_annotated(part, size))
    return runs


def _annotated(text: str, size: int, bold: bool = False, code: bool = False) -> List[Dict[str, Any]]:
    return [text_run(piece, bold=bold, code=code) for piece in chunk_text(text, size)]


def _text_blocks(block_type: str, runs: List[Dict[str, Any]],
                 extra: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """One block per 100 runs; a long text becomes several consecutive blocks."""
    blocks = []
    for i in range(0, max(len(runs), 1), MAX_RICH_TEXT_RUNS):
        payload: Dict[str, Any] = {"rich_text": runs[i:i + MAX_RICH_TEXT_RUNS]}
        if extra:
            payload.update(extra)
        blocks.append({"object": "block", "type": block_type, block_type: payload})
    return blocks


def code_language(tag: str) -> str:
    """Map a fence info string onto a language the API accepts."""
    name = tag.strip().lower()
    name = LANGUAGE_ALIASES.get(name, name)
    return name if name in CODE_LANGUAGES else "plain text"


def markdown_to_blocks(markdown: str, text_chunk_size: int = TEXT_CHUNK_SIZE) -> List[Dict[str, Any]]:
    """
    Convert the Markdown produced by the renderer into Notion blocks.

    Handles headings (#, ##, ###), fenced code, bullet and numbered lists,
    quotes, horizontal rules and paragraphs. Anything else is kept as text.
    """
    blocks: List[Dict[str, Any]] = []
    paragraph: List[str] = []
    code_lines: Optional[List[str]] = None
    language = "plain text"
    fence_length = 0

    def flush_paragraph():
        if paragraph:
            text = "\n".join(paragraph)
            blocks.extend(_text_blocks("paragraph", inline_rich_text(text, text_chunk_size)))
            paragraph.clear()

    for line in markdown.split("\n"):
        stripped = line.strip()

        if code_lines is not None:
            # Only a bare fence at least as long as the opening one closes the block
            if len(stripped) >= fence_length and stripped == "`" * len(stripped):
                blocks.extend(_text_blocks(
                    "code", rich_text("\n".join(code_lines), text_chunk_size), {"language": language}
                ))
                code_lines = None
            else:
                code_lines.append(line)
            continue

        fence = FENCE_PATTERN.match(stripped)
        if fence:
            flush_paragraph()
            code_lines = []
            fence_length = len(fence.group(1))
            language = code_language(fence.group(2))
            continue

        if not stripped:
            flush_paragraph()
            continue

        heading = HEADING_PATTERN.match(stripped)
        if heading:
            flush_paragraph()
            level = len(heading.group(1))
            blocks.extend(_text_blocks(f"heading_{level}", inline_rich_text(heading.group(2), text_chunk_size)))
            continue

        if stripped in ("---", "***", "___"):
            flush_paragraph()
            blocks.append({"object": "block", "type": "divider", "divider": {}})
            continue

        bullet = BULLET_PATTERN.match(stripped)
        if bullet:
            flush_paragraph()
            blocks.extend(_text_blocks("bulleted_list_item", inline_rich_text(bullet.group(1), text_chunk_size)))
            continue

        numbered = NUMBERED_PATTERN.match(stripped)
        if numbered:
            flush_paragraph()
            blocks.extend(_text_blocks("numbered_list_item", inline_rich_text(numbered.group(1), text_chunk_size)))
            continue

        if stripped.startswith(">"):
            flush_paragraph()
            blocks.extend(_text_blocks("quote", inline_rich_text(stripped[1:].strip(), text_chunk_size)))
            continue

        paragraph.append(line)

    # Unterminated fence: keep what was collected
    if code_lines is not None:
        blocks.extend(_text_blocks("code", rich_text("\n".join(code_lines), text_chunk_size), {"language": language}))
    flush_paragraph()

    return sanitize_blocks(blocks, text_chunk_size)


def _split_runs(runs: List[Any], size: int) -> List[Dict[str, Any]]:
    result = []
    for run in runs:
        if not isinstance(run, dict):
            continue
        text = run.get("text")
        content = text.get("content") if isinstance(text, dict) else None
        if isinstance(content, str) and utf16_length(content) > size:
            for piece in chunk_text(content, size):
                result.append({**run, "text": {**text, "content": piece}})
        else:
            result.append(run)
    return result


def sanitize_blocks(blocks: List[Any], text_chunk_size: int = TEXT_CHUNK_SIZE) -> List[Dict[str, Any]]:
    """
    Drop or repair blocks the API would reject.

    - Unknown or missing types, or a missing type payload: dropped
    - Text blocks without rich text: dropped, unless they carry children,
      in which case a single empty run is substituted
    - Text runs longer than text_chunk_size: split
    - Children are validated the same way
    """
    clean: List[Dict[str, Any]] = []
    for block in blocks:
        if not isinstance(block, dict):
            logger.debug("Dropping non-object block")
            continue
        block_type = block.get("type")
        if block_type not in SUPPORTED_BLOCK_TYPES or not isinstance(block.get(block_type), dict):
            logger.debug(f"Dropping block with unsupported type: {block_type!r}")
            continue

        payload = dict(block[block_type])
        children = payload.get("children")
        if children:
            payload["children"] = sanitize_blocks(children, text_chunk_size)
            if not payload["children"]:
                del payload["children"]
        elif "children" in payload:
            del payload["children"]

        if block_type in TEXT_BLOCK_TYPES:
            runs = _split_runs(payload.get("rich_text") or [], text_chunk_size)
            if not runs:
                if not payload.get("children"):
                    logger.debug(f"Dropping empty {block_type} block")
                    continue
                runs = [text_run("")]
            if len(runs) > MAX_RICH_TEXT_RUNS:
                logger.debug(f"Truncating {block_type} block from {len(runs)} text runs")
            payload["rich_text"] = runs[:MAX_RICH_TEXT_RUNS]

        clean.append({**block, "object": "block", "type": block_type, block_type: payload})
    return clean
