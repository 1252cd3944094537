"""
Unit tests for the Markdown exporter.
"""

import io
import zipfile

import pytest

from chatexport.core import parse_backup
from chatexport.exporters.markdown import (
    NO_CONTENT,
    build_markdown_archive,
    code_fence,
    ensure_unique_name,
    format_content,
    render_topic,
    render_tree,
    safe_filename,
    save_markdown_export,
)
from chatexport.models import LobeAgent, LobeMessage, LobeSession, LobeTopic, TopicGroup
from chatexport.storage import LocalStorage


class TestSafeFilename:

    def test_reserved_characters(self):
        assert safe_filename('a/b:c*"d"?', "x") == "a_b_c_d"

    def test_whitespace_collapsed(self):
        assert safe_filename("  hello   world \n", "x") == "hello_world"

    def test_fallback(self):
        assert safe_filename(None, "fb") == "fb"
        assert safe_filename("  ", "fb") == "fb"
        assert safe_filename("///", "fb") == "fb"
        assert safe_filename("", "") == "untitled"

    def test_max_length(self):
        assert safe_filename("a" * 100, "x") == "a" * 80
        assert safe_filename("abc def", "x", max_length=4) == "abc"

    @pytest.mark.parametrize("text", [
        'a/b:c*"d"?',
        "<<|>>",
        "  hello   world \n",
        "tab\there\u3000wide",
        "x" * 200,
        "word " * 30,
        "a" * 79 + " b",
        "///",
        None,
    ])
    def test_idempotent(self, text):
        once = safe_filename(text, "fb")
        assert safe_filename(once, "fb") == once
        assert len(once) <= 80
        assert not any(c.isspace() or c in '<>:"/\\|?*' for c in once)


class TestEnsureUniqueName:

    def test_suffixes(self):
        used = set()
        assert ensure_unique_name("n", used) == "n"
        assert ensure_unique_name("n", used) == "n_1"
        assert ensure_unique_name("n", used) == "n_2"
        assert used == {"n", "n_1", "n_2"}

    def test_skips_taken_suffix(self):
        used = {"n", "n_1"}
        assert ensure_unique_name("n", used) == "n_2"


class TestFormatContent:

    def test_empty(self):
        assert format_content(None) == [NO_CONTENT, ""]
        assert format_content("") == [NO_CONTENT, ""]

    def test_plain_text(self):
        assert format_content("Hi") == ["Hi", ""]

    def test_multiline_fenced(self):
        assert format_content("a\nb") == ["```", "a\nb", "```", ""]

    def test_json_string_pretty_printed(self):
        lines = format_content('{"a": 1}')
        assert lines[0] == "```json"
        assert lines[1] == '{\n  "a": 1\n}'

    def test_invalid_json_string_kept(self):
        assert format_content("{not json") == ["{not json", ""]

    def test_structured_value(self):
        lines = format_content([{"type": "text", "text": "hi"}])
        assert lines[0] == "```json"
        assert '"type": "text"' in lines[1]

    def test_fence_longer_than_inner_fences(self):
        content = "Run this:\n```python\nprint(1)\n```"
        assert format_content(content) == ["````", content, "````", ""]

    def test_json_fence_longer_than_inner_backticks(self):
        lines = format_content({"snippet": "`````"})
        assert lines[0] == "``````json"
        assert lines[2] == "``````"


class TestCodeFence:

    @pytest.mark.parametrize("text, fence", [
        ("plain", "```"),
        ("`one`", "```"),
        ("``` nested ```", "````"),
        ("a ```` b ``` c", "`````"),
    ])
    def test_length(self, text, fence):
        assert code_fence(text) == fence


class TestRenderTopic:

    def _group(self):
        topic = LobeTopic(id="t1", title="Hello", createdAt="2024-01-01T00:00:00Z")
        messages = [
            LobeMessage(id="m1", role="user", content="Hi", createdAt="2024-01-01T00:00:01Z"),
            LobeMessage(id="m2", role="assistant", content="Hello!", reasoning="Greeting back"),
        ]
        return TopicGroup(topic_id="t1", topic_label="Hello", topic=topic, messages=messages)

    def test_full_document(self):
        agent = LobeAgent(id="a1", title="Helper", systemRole="Be nice", model="gpt-4o", provider="openai")
        session = LobeSession(id="s1", title="Chat")
        text = render_topic(agent, session, self._group(), "Helper")

        assert text.startswith("# Hello\n")
        assert text.endswith("\n")
        assert not text.endswith("\n\n")
        assert "## Session" in text
        assert "- **Session Title**: Chat" in text
        assert "- **Topic ID**: t1" in text
        assert "- **Model**: gpt-4o" in text
        assert "## System Prompt" in text
        assert "Be nice" in text
        assert "### 2024-01-01T00:00:01Z - User" in text
        assert "### unknown time - Assistant" in text
        assert "**Reasoning**" in text

    def test_body_only(self):
        agent = LobeAgent(id="a1", title="Helper", systemRole="Be nice")
        text = render_topic(agent, LobeSession(id="s1"), self._group(), "Helper",
                            include_metadata=False, include_system_prompt=False)
        assert "## Session" not in text
        assert "## System Prompt" not in text
        assert "## Messages" in text

    def test_without_agent(self):
        text = render_topic(None, None, self._group(), "unassigned assistant")
        assert "## Assistant" not in text
        assert "## Session" not in text

    def test_one_heading_per_message_in_order(self):
        messages = [
            LobeMessage(id="m3", role="user", content="third", createdAt="2024-01-01T00:00:03Z"),
            LobeMessage(id="m1", role="user", content="first", createdAt="2024-01-01T00:00:01Z"),
            LobeMessage(id="m4", role="assistant", content="fourth", updatedAt="2024-01-01T00:00:04Z"),
            LobeMessage(id="m2", role="assistant", content="second", createdAt="2024-01-01T00:00:02Z"),
        ]
        group = TopicGroup(topic_id="t1", topic_label="Order", topic=None, messages=messages)

        text = render_topic(None, None, group, "Helper", include_metadata=False)

        headings = [line for line in text.split("\n") if line.startswith("### ")]
        assert headings == [
            "### 2024-01-01T00:00:01Z - User",
            "### 2024-01-01T00:00:02Z - Assistant",
            "### 2024-01-01T00:00:03Z - User",
            "### 2024-01-01T00:00:04Z - Assistant",
        ]
        positions = [text.index(word) for word in ("first", "second", "third", "fourth")]
        assert positions == sorted(positions)


class TestRenderTree:

    def test_layout_and_index(self, sample_backup):
        parsed = parse_backup(sample_backup, source_file_name="backup.json")
        export = render_tree(parsed)

        paths = [f.path for f in export.files]
        assert paths == ["Helper/Hello/Hello.md", "index.md"]

        index = export.files[-1].content
        assert index.startswith("# LobeChat Conversation Index")
        assert "`backup.json`" in index
        assert "- [Helper / Hello / Hello](Helper/Hello/Hello.md) - 1 messages" in index

    def test_duplicate_topic_names(self, sample_backup):
        sample_backup["data"]["topics"].append({"id": "t2", "sessionId": "s1", "title": "Hello"})
        sample_backup["data"]["messages"].append({"id": "m2", "topicId": "t2", "content": "x"})
        export = render_tree(parse_backup(sample_backup))

        paths = sorted(f.path for f in export.files)
        assert paths == ["Helper/Hello/Hello.md", "Helper/Hello/Hello_1.md", "index.md"]


class TestMarkdownArchive:

    def test_zip_contents(self, sample_backup):
        archive = build_markdown_archive(parse_backup(sample_backup, source_file_name="my-backup.json"))
        assert archive.file_name == "my-backup-markdown.zip"
        assert archive.file_count == 2

        with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
            assert sorted(zf.namelist()) == ["Helper/Hello/Hello.md", "index.md"]
            assert "Hi" in zf.read("Helper/Hello/Hello.md").decode("utf-8")

    def test_default_name(self, sample_backup):
        archive = build_markdown_archive(parse_backup(sample_backup))
        assert archive.file_name == "lobechat-export-markdown.zip"


class TestSaveMarkdownExport:

    @pytest.mark.asyncio
    async def test_writes_files(self, sample_backup, tmp_path):
        storage = LocalStorage(base_dir=str(tmp_path))
        export = render_tree(parse_backup(sample_backup))

        written = await save_markdown_export(storage, export, prefix="run1")

        assert written == ["run1/Helper/Hello/Hello.md", "run1/index.md"]
        assert (tmp_path / "run1" / "Helper" / "Hello" / "Hello.md").read_text(encoding="utf-8").startswith("# Hello")
