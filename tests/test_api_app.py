"""Tests for the HTTP surface, with every collaborator swapped via dependency overrides."""

import pytest
from conftest import (
    FakeIndex,
    ScriptedModel,
)
from fastapi.testclient import TestClient

from agentdesk.api import app as app_module
from agentdesk.tools.mcp_client import McpClient
from agentdesk.tools.schema_cache import ToolSchemaCache


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel(reply="Hi from Ada")


@pytest.fixture
def client(agent_store, conversation_store, source_store, model):
    app = app_module.app
    index = FakeIndex()
    cache = ToolSchemaCache(McpClient().list_tools)
    app.dependency_overrides = {
        app_module.get_agent_store: lambda: agent_store,
        app_module.get_conversation_store: lambda: conversation_store,
        app_module.get_source_store: lambda: source_store,
        app_module.get_knowledge_index: lambda: index,
        app_module.get_schema_cache: lambda: cache,
        app_module.get_model: lambda: model,
    }
    yield TestClient(app)
    app.dependency_overrides = {}


def _create(client, user="alice", name="Ada", **extra):
    response = client.post("/agents", json={"user_id": user, "name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_agent_crud(client) -> None:
    agent = _create(client, user="Alice", personality="calm")
    assert agent["owner_id"] == "alice"
    assert "Your personality: calm." in agent["system_instructions"]

    listed = client.get("/agents", params={"user_id": "alice"}).json()
    assert [a["id"] for a in listed] == [agent["id"]]

    patched = client.patch(
        f"/agents/{agent['id']}",
        json={
            "user_id": "alice",
            "visibility": "public",
            "api_tools": [{"name": "ens", "url": "https://gql.example", "apiType": "graphql"}],
        },
    )
    assert patched.status_code == 200, patched.text
    assert patched.json()["visibility"] == "public"
    assert patched.json()["api_tools"][0]["api_type"] == "graphql"

    assert client.patch(f"/agents/{agent['id']}", json={"user_id": "bob"}).status_code == 403
    assert client.delete(f"/agents/{agent['id']}", params={"user_id": "bob"}).status_code == 403
    assert client.delete(f"/agents/{agent['id']}", params={"user_id": "alice"}).json() == {
        "success": True
    }
    assert client.get(f"/agents/{agent['id']}", params={"user_id": "alice"}).status_code == 404


def test_agent_limit_is_a_client_error(client) -> None:
    for i in range(5):
        _create(client, name=f"Agent {i}")
    response = client.post("/agents", json={"user_id": "alice", "name": "One too many"})
    assert response.status_code == 400
    assert "Maximum of 5" in response.json()["detail"]


def test_chat_round_trip_and_history(client, model) -> None:
    agent = _create(client)

    response = client.post(
        f"/agents/{agent['id']}/chat", json={"userId": "alice", "message": "hello"}
    )
    assert response.status_code == 200, response.text
    assert response.json() == {"message": "Hi from Ada", "agent_name": "Ada", "agent_emoji": "🤖"}

    history = client.get(f"/agents/{agent['id']}/chat", params={"user_id": "alice"}).json()
    assert [(m["role"], m["content"]) for m in history["messages"]] == [
        ("user", "hello"),
        ("model", "Hi from Ada"),
    ]

    cleared = client.delete(f"/agents/{agent['id']}/chat", params={"user_id": "alice"})
    assert cleared.json() == {"deleted": 2}


@pytest.mark.parametrize(
    "payload, status",
    [
        ({"userId": "alice", "message": ""}, 400),
        ({"message": "hello"}, 400),
        ({"userId": "mallory", "message": "hello"}, 403),
    ],
)
def test_chat_rejections(client, payload, status) -> None:
    agent = _create(client)
    assert client.post(f"/agents/{agent['id']}/chat", json=payload).status_code == status


def test_chat_unknown_agent(client) -> None:
    response = client.post("/agents/nope/chat", json={"userId": "alice", "message": "hi"})
    assert response.status_code == 404


def test_model_failure_is_bad_gateway(client, model) -> None:
    agent = _create(client)
    model.fail = True
    response = client.post(f"/agents/{agent['id']}/chat", json={"userId": "alice", "message": "hi"})
    assert response.status_code == 502


def test_missing_model_is_not_configured(client) -> None:
    agent = _create(client)
    app_module.app.dependency_overrides[app_module.get_model] = lambda: None
    response = client.post(f"/agents/{agent['id']}/chat", json={"userId": "alice", "message": "hi"})
    assert response.status_code == 500
    assert "not configured" in response.json()["detail"]


def test_knowledge_sources(client) -> None:
    agent = _create(client)
    url = f"/agents/{agent['id']}/knowledge"

    created = client.post(url, json={"user_id": "alice", "url": "https://docs.example.com"})
    assert created.status_code == 201
    assert created.json()["title"] == "https://docs.example.com"
    assert created.json()["status"] == "pending"

    duplicate = client.post(url, json={"user_id": "alice", "url": "https://docs.example.com"})
    assert duplicate.status_code == 400
    assert client.post(url, json={"user_id": "bob", "url": "https://x.example"}).status_code == 403

    listed = client.get(url, params={"user_id": "alice"}).json()
    assert [s["url"] for s in listed] == ["https://docs.example.com"]

    missing = client.post(f"{url}/nope/index", params={"user_id": "alice"})
    assert missing.status_code == 404


def test_detect_api_requires_url(client) -> None:
    assert client.post("/agents/detect-api", json={}).status_code == 400
