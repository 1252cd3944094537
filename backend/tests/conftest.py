"""
Shared test fixtures and configuration.
"""

import copy
import os

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_CONSOLE_ENABLED", "false")
os.environ.setdefault("EXPORT_STORAGE_PATH", "/tmp/chatexport_test_exports")
os.environ.setdefault("NOTION_REQUEST_DELAY", "0")
os.environ.setdefault("NOTION_PARENT_PAGE_ID", "")

SAMPLE_BACKUP = {
    "data": {
        "assistants": [{"id": "a1", "title": "Helper"}],
        "sessions": [{"id": "s1", "title": "Chat"}],
        "topics": [{"id": "t1", "sessionId": "s1", "title": "Hello"}],
        "messages": [{"id": "m1", "topicId": "t1", "role": "user", "content": "Hi"}],
        "agentsToSessions": [{"agentId": "a1", "sessionId": "s1"}],
    }
}

DATED_BACKUP = {
    "data": {
        "agents": [
            {
                "id": "agt_1",
                "title": "Translator",
                "systemRole": "You translate text.",
                "model": "gpt-4o",
                "provider": "openai",
                "createdAt": "2024-01-01T00:00:00.000Z",
                "updatedAt": "2024-01-01T00:00:00.000Z",
            }
        ],
        "sessions": [
            {
                "id": "ssn_1",
                "createdAt": "2024-01-02T08:00:00.000Z",
                "updatedAt": "2024-01-03T08:00:00.000Z",
            }
        ],
        "topics": [
            {
                "id": "tpc_000001",
                "sessionId": "ssn_1",
                "title": "French greetings",
                "createdAt": "2024-01-02T09:00:00.000Z",
                "updatedAt": "2024-01-02T09:05:00.000Z",
            }
        ],
        "messages": [
            {
                "id": "msg_2",
                "topicId": "tpc_000001",
                "role": "assistant",
                "content": "Bonjour",
                "createdAt": "2024-01-02T09:01:00.000Z",
            },
            {
                "id": "msg_1",
                "topicId": "tpc_000001",
                "role": "user",
                "content": "How do I say hello?",
                "createdAt": "2024-01-02T09:00:30.000Z",
            },
        ],
        "agentsToSessions": [{"agentId": "agt_1", "sessionId": "ssn_1"}],
    }
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def sample_backup():
    return copy.deepcopy(SAMPLE_BACKUP)


@pytest.fixture
def dated_backup():
    return copy.deepcopy(DATED_BACKUP)
