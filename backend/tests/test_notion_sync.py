"""
Tests for the Notion sync engine against an in-memory Notion workspace.
"""

import copy

import pytest

from chatexport.core import parse_backup
from chatexport.exporters.notion import (
    NotionSyncConfig,
    NotionSyncEngine,
    SchemaResolutionError,
    SyncStopped,
    sync_to_notion,
)
from chatexport.exporters.notion.sync import assistant_timestamps, topic_timestamps

ASSISTANT_DB = "asst-db"
TOPIC_DB = "topic-db"


def _plain(runs):
    return "".join(run["text"]["content"] for run in runs or [])


class FakeNotionClient:
    """Stores pages the way they were written and answers queries on them."""

    def __init__(self, with_updated=True, with_relation=True, page_size=100):
        self.pages = {}
        self.calls = []
        self.page_size = page_size
        self._next_id = 0
        assistant_properties = {
            "Name": {"type": "title", "title": {}},
            "Prompt": {"type": "rich_text", "rich_text": {}},
            "Created": {"type": "date", "date": {}},
        }
        topic_properties = {
            "Title": {"type": "title", "title": {}},
            "Session": {"type": "rich_text", "rich_text": {}},
            "Created": {"type": "date", "date": {}},
        }
        if with_updated:
            assistant_properties["Updated"] = {"type": "date", "date": {}}
            topic_properties["Updated"] = {"type": "date", "date": {}}
        if with_relation:
            topic_properties["Assistant"] = {"type": "relation", "relation": {"database_id": ASSISTANT_DB}}
        self.databases = {
            ASSISTANT_DB: {"id": ASSISTANT_DB, "properties": assistant_properties},
            TOPIC_DB: {"id": TOPIC_DB, "properties": topic_properties},
        }

    async def retrieve_database(self, database_id):
        self.calls.append(("retrieve_database", database_id))
        return self.databases[database_id]

    async def query_database(self, database_id, filter=None, start_cursor=None, page_size=100):
        self.calls.append(("query_database", database_id))
        matches = [
            page for page in self.pages.values()
            if page["parent"].get("database_id") == database_id
            and not page["archived"]
            and (filter is None or self._matches(page, filter))
        ]
        start = int(start_cursor or 0)
        end = start + self.page_size
        has_more = end < len(matches)
        return {
            "results": copy.deepcopy(matches[start:end]),
            "has_more": has_more,
            "next_cursor": str(end) if has_more else None,
        }

    def _matches(self, page, condition):
        if "and" in condition:
            return all(self._matches(page, c) for c in condition["and"])
        if "or" in condition:
            return any(self._matches(page, c) for c in condition["or"])
        prop = page["properties"].get(condition["property"], {})
        if "title" in condition:
            return _plain(prop.get("title")) == condition["title"]["equals"]
        if "relation" in condition:
            return condition["relation"]["contains"] in [r["id"] for r in prop.get("relation", [])]
        raise AssertionError(f"Unsupported filter: {condition}")

    async def create_page(self, parent, properties, children=None):
        self.calls.append(("create_page", parent))
        self._next_id += 1
        page = {
            "id": f"page-{self._next_id}",
            "parent": parent,
            "properties": copy.deepcopy(properties),
            "children": list(children or []),
            "archived": False,
        }
        self.pages[page["id"]] = page
        return copy.deepcopy(page)

    async def append_block_children(self, block_id, children):
        self.calls.append(("append_block_children", block_id))
        self.pages[block_id]["children"].extend(children)
        return {"results": children}

    async def archive_page(self, page_id):
        self.calls.append(("archive_page", page_id))
        self.pages[page_id]["archived"] = True
        return {"id": page_id, "archived": True}

    def live(self, database_id):
        return [
            p for p in self.pages.values()
            if p["parent"].get("database_id") == database_id and not p["archived"]
        ]

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


def db_config():
    return NotionSyncConfig(token="secret", assistant_database_id=ASSISTANT_DB, topic_database_id=TOPIC_DB)


def engine_for(client, log=None, should_stop=None, **kwargs):
    return NotionSyncEngine(client, log=log, should_stop=should_stop, request_delay=0, **kwargs)


class TestNotionSyncConfig:

    def test_blank_values_become_none(self):
        config = NotionSyncConfig(token=" secret ", proxy_url=" ", assistant_database_id="", topic_database_id="x")
        assert config.token == "secret"
        assert config.proxy_url is None
        assert config.assistant_database_id is None
        assert not config.use_databases

    def test_use_databases(self):
        assert db_config().use_databases


class TestTimestamps:

    def test_assistant_range_covers_tree(self, dated_backup):
        group = parse_backup(dated_backup).groups[0]
        earliest, latest = assistant_timestamps(group)
        assert earliest.isoformat() == "2024-01-01T00:00:00+00:00"
        assert latest.isoformat() == "2024-01-03T08:00:00+00:00"

    def test_topic_falls_back_to_session(self, dated_backup):
        dated_backup["data"]["topics"][0].pop("createdAt")
        dated_backup["data"]["topics"][0].pop("updatedAt")
        for message in dated_backup["data"]["messages"]:
            message.pop("createdAt")
        group = parse_backup(dated_backup).groups[0]
        session_group, topic_group = next(group.iter_topics())
        earliest, latest = topic_timestamps(session_group, topic_group)
        assert earliest.isoformat() == "2024-01-02T08:00:00+00:00"
        assert latest.isoformat() == "2024-01-03T08:00:00+00:00"


class TestDatabaseMode:

    @pytest.mark.asyncio
    async def test_first_run_creates_records(self, dated_backup):
        client = FakeNotionClient()
        logs = []
        summary = await engine_for(client, log=lambda m, level: logs.append((m, level))).run(
            parse_backup(dated_backup), db_config()
        )

        assert (summary.mode, summary.created, summary.replaced, summary.skipped) == ("databases", 2, 0, 0)

        [assistant] = client.live(ASSISTANT_DB)
        assert _plain(assistant["properties"]["Name"]["title"]) == "Translator"
        assert _plain(assistant["properties"]["Prompt"]["rich_text"]) == "You translate text."
        assert assistant["properties"]["Updated"]["date"] == {
            "start": "2024-01-03T16:00:00",
            "time_zone": "Asia/Shanghai",
        }

        [topic] = client.live(TOPIC_DB)
        assert _plain(topic["properties"]["Title"]["title"]) == "French greetings"
        assert topic["properties"]["Assistant"]["relation"] == [{"id": assistant["id"]}]
        assert _plain(topic["properties"]["Session"]["rich_text"]) == "2024-01-02 French greetings"
        body = " ".join(_plain(b[b["type"]].get("rich_text")) for b in topic["children"] if b["type"] != "divider")
        assert "Bonjour" in body
        assert "You translate text." not in body
        assert any("Creating assistant record" in m for m, _ in logs)

    @pytest.mark.asyncio
    async def test_second_run_skips_unchanged(self, dated_backup):
        client = FakeNotionClient()
        parsed = parse_backup(dated_backup)
        await engine_for(client).run(parsed, db_config())
        creates_before = client.count("create_page")

        summary = await engine_for(client).run(parse_backup(dated_backup), db_config())

        assert (summary.created, summary.replaced, summary.skipped) == (0, 0, 2)
        assert client.count("create_page") == creates_before
        assert client.count("archive_page") == 0

    @pytest.mark.asyncio
    async def test_changed_assistant_replaces_records(self, dated_backup):
        client = FakeNotionClient()
        await engine_for(client).run(parse_backup(dated_backup), db_config())
        [old_assistant] = client.live(ASSISTANT_DB)
        [old_topic] = client.live(TOPIC_DB)

        dated_backup["data"]["agents"][0]["updatedAt"] = "2024-02-01T00:00:00.000Z"
        summary = await engine_for(client).run(parse_backup(dated_backup), db_config())

        assert (summary.created, summary.replaced, summary.skipped) == (0, 2, 0)
        assert client.pages[old_assistant["id"]]["archived"]
        assert client.pages[old_topic["id"]]["archived"]

        [new_assistant] = client.live(ASSISTANT_DB)
        [new_topic] = client.live(TOPIC_DB)
        assert new_topic["properties"]["Assistant"]["relation"] == [{"id": new_assistant["id"]}]

    @pytest.mark.asyncio
    async def test_duplicate_topic_labels_kept_apart(self, dated_backup):
        dated_backup["data"]["topics"].append({
            "id": "tpc_000002",
            "sessionId": "ssn_1",
            "title": "French greetings",
            "createdAt": "2024-01-02T10:00:00.000Z",
        })
        dated_backup["data"]["messages"].append({"id": "msg_3", "topicId": "tpc_000002", "content": "Salut"})
        client = FakeNotionClient(page_size=1)

        first = await engine_for(client).run(parse_backup(dated_backup), db_config())
        second = await engine_for(client).run(parse_backup(dated_backup), db_config())

        assert first.created == 3
        assert len(client.live(TOPIC_DB)) == 2
        assert (second.created, second.replaced, second.skipped) == (0, 0, 3)

    @pytest.mark.asyncio
    async def test_long_titles_found_again(self, dated_backup):
        dated_backup["data"]["agents"][0]["title"] = "Translator " + "😀" * 1200
        dated_backup["data"]["topics"][0]["title"] = "French " + "x" * 2500
        client = FakeNotionClient()

        first = await engine_for(client).run(parse_backup(dated_backup), db_config())
        second = await engine_for(client).run(parse_backup(dated_backup), db_config())

        assert first.created == 2
        assert (second.created, second.replaced, second.skipped) == (0, 0, 2)
        [assistant] = client.live(ASSISTANT_DB)
        [topic] = client.live(TOPIC_DB)
        assert len(assistant["properties"]["Name"]["title"]) == 1
        stored = _plain(assistant["properties"]["Name"]["title"])
        assert len(stored.encode("utf-16-le")) // 2 <= 1800
        assert _plain(topic["properties"]["Title"]["title"]) == "French " + "x" * 1793

    @pytest.mark.asyncio
    async def test_without_updated_property_always_replaces(self, dated_backup):
        client = FakeNotionClient(with_updated=False)
        logs = []
        await engine_for(client).run(parse_backup(dated_backup), db_config())
        summary = await engine_for(client, log=lambda m, level: logs.append((m, level))).run(
            parse_backup(dated_backup), db_config()
        )

        assert summary.replaced == 2
        assert len(client.live(ASSISTANT_DB)) == 1
        assert len(client.live(TOPIC_DB)) == 1
        assert any(level == "warning" for _, level in logs)

    @pytest.mark.asyncio
    async def test_missing_relation_property(self, dated_backup):
        client = FakeNotionClient(with_relation=False)
        with pytest.raises(SchemaResolutionError):
            await engine_for(client).run(parse_backup(dated_backup), db_config())
        assert client.count("create_page") == 0


class TestPageMode:

    @pytest.mark.asyncio
    async def test_creates_nested_pages(self, sample_backup):
        client = FakeNotionClient()
        config = NotionSyncConfig(token="secret", parent_page_id="root-page")

        summary = await engine_for(client).run(parse_backup(sample_backup), config)

        assert (summary.mode, summary.created) == ("pages", 2)
        assistant_page, topic_page = client.pages["page-1"], client.pages["page-2"]
        assert assistant_page["parent"] == {"type": "page_id", "page_id": "root-page"}
        assert _plain(assistant_page["properties"]["title"]["title"]) == "Helper"
        assert topic_page["parent"] == {"type": "page_id", "page_id": "page-1"}
        assert topic_page["children"][0]["type"] == "heading_1"

    @pytest.mark.asyncio
    async def test_workspace_parent(self, sample_backup):
        client = FakeNotionClient()
        await engine_for(client).run(parse_backup(sample_backup), NotionSyncConfig(token="secret"))
        assert client.pages["page-1"]["parent"] == {"type": "workspace", "workspace": True}

    @pytest.mark.asyncio
    async def test_large_body_appended_in_batches(self, sample_backup):
        sample_backup["data"]["messages"].extend(
            {"id": f"m{i + 2}", "topicId": "t1", "role": "user", "content": f"line {i}"} for i in range(10)
        )
        client = FakeNotionClient()

        await engine_for(client, block_batch_size=5).run(parse_backup(sample_backup), NotionSyncConfig(token="t"))

        topic_page = client.pages["page-2"]
        assert client.count("append_block_children") >= 2
        assert len(topic_page["children"]) > 5
        texts = [_plain(b[b["type"]].get("rich_text")) for b in topic_page["children"]]
        assert "line 9" in texts


class TestCancellation:

    @pytest.mark.asyncio
    async def test_stop_after_first_call(self, sample_backup):
        client = FakeNotionClient()
        engine = engine_for(client, should_stop=lambda: len(client.calls) >= 1)

        with pytest.raises(SyncStopped):
            await engine.run(parse_backup(sample_backup), NotionSyncConfig(token="t"))

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_stop_before_any_call(self, sample_backup):
        client = FakeNotionClient()
        with pytest.raises(SyncStopped):
            await engine_for(client, should_stop=lambda: True).run(
                parse_backup(sample_backup), NotionSyncConfig(token="t")
            )
        assert client.calls == []


class TestSyncToNotion:

    @pytest.mark.asyncio
    async def test_missing_token(self, sample_backup):
        with pytest.raises(ValueError, match="Missing Notion token"):
            await sync_to_notion(parse_backup(sample_backup), NotionSyncConfig(token="  "),
                                 client=FakeNotionClient())

    @pytest.mark.asyncio
    async def test_nothing_to_export(self):
        parsed = parse_backup({"data": {"sessions": []}})
        with pytest.raises(ValueError, match="No conversations"):
            await sync_to_notion(parsed, NotionSyncConfig(token="t"), client=FakeNotionClient())

    @pytest.mark.asyncio
    async def test_runs_with_injected_client(self, sample_backup):
        client = FakeNotionClient()
        logs = []
        summary = await sync_to_notion(
            parse_backup(sample_backup),
            db_config(),
            log=lambda m, level: logs.append(m),
            client=client,
        )
        assert summary.created == 2
        assert logs[0] == "Reading Notion database schema"
