"""Tests for the REST / GraphQL / OpenAPI tool executor."""

import json

import httpx
import pytest
from conftest import ScriptedModel

from agentdesk.agent.api_executor import (
    ApiToolExecutor,
    sanitize_headers,
)
from agentdesk.core.schema import (
    Agent,
    GraphQLApiTool,
    OpenApiTool,
    RestApiTool,
)


class Recorder:
    """MockTransport handler that records requests and answers with a fixed response."""

    def __init__(self, status: int = 200, text: str = '{"ok": true}') -> None:
        self.status = status
        self.text = text
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, text=self.text)


def _executor(model, recorder) -> ApiToolExecutor:
    return ApiToolExecutor(model, timeout=1.0, transport=httpx.MockTransport(recorder))


def test_invalid_header_names_are_dropped() -> None:
    assert sanitize_headers({"X-Key: ": "abc", "X-Key": "abc", "": "x", "Bad Name": "y"}) == {
        "X-Key": "abc"
    }


@pytest.mark.asyncio
async def test_colon_header_is_not_sent() -> None:
    recorder = Recorder()
    tool = RestApiTool(
        name="prices",
        url="https://api.example.com/prices",
        headers={"X-Key: ": "abc", "X-Key": "abc"},
        api_key="tok",
    )

    await _executor(ScriptedModel(), recorder).execute(tool, "price of eth")

    sent = recorder.requests[0].headers
    assert sent["X-Key"] == "abc"
    assert all(":" not in name for name in sent.keys())
    assert sent["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_rest_body_carries_message_three_times() -> None:
    recorder = Recorder()
    tool = RestApiTool(name="echo", url="https://api.example.com/echo")

    result = await _executor(ScriptedModel(), recorder).execute(tool, "hello there")

    assert json.loads(recorder.requests[0].content) == {
        "query": "hello there",
        "message": "hello there",
        "text": "hello there",
    }
    assert result == '{"ok": true}'


@pytest.mark.asyncio
async def test_get_request_has_no_body() -> None:
    recorder = Recorder()
    tool = RestApiTool(name="status", url="https://api.example.com/status", method="get")

    await _executor(ScriptedModel(), recorder).execute(tool, "status?")

    assert recorder.requests[0].method == "GET"
    assert recorder.requests[0].content == b""


@pytest.mark.asyncio
async def test_graphql_query_is_synthesised_without_fences() -> None:
    recorder = Recorder(text='{"data": {"domains": []}}')
    model = ScriptedModel(
        answers=["```graphql\nquery { domains(first: 3) { name } }\n```"]
    )
    tool = GraphQLApiTool(
        name="ens", url="https://gql.example.com", method="GET", schema="type Domain { name: String }"
    )

    executor = _executor(model, recorder)
    query = await executor.synthesize_graphql_query(tool, "show me the last 3 domains")
    assert query == "query { domains(first: 3) { name } }"
    assert "```" not in query
    assert "type Domain { name: String }" in model.prompts[0]

    model.answers.append("```\nquery { domains(first: 3) { name } }\n```")
    await executor.execute(tool, "show me the last 3 domains")
    request = recorder.requests[0]
    assert request.method == "POST"
    assert json.loads(request.content) == {"query": "query { domains(first: 3) { name } }"}


@pytest.mark.asyncio
async def test_empty_graphql_synthesis_skips_the_call() -> None:
    recorder = Recorder()
    tool = GraphQLApiTool(name="ens", url="https://gql.example.com")

    assert await _executor(ScriptedModel(answers=[""]), recorder).execute(tool, "list") is None
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_openapi_body_falls_back_to_empty_object() -> None:
    recorder = Recorder()
    tool = OpenApiTool(name="pets", url="https://pets.example.com/search", schema="POST /search")

    await _executor(ScriptedModel(answers=["no json here"]), recorder).execute(tool, "dogs")
    assert json.loads(recorder.requests[0].content) == {}

    await _executor(ScriptedModel(answers=['Sure: {"species": "dog"}']), recorder).execute(
        tool, "dogs"
    )
    assert json.loads(recorder.requests[1].content) == {"species": "dog"}


@pytest.mark.asyncio
async def test_error_status_body_is_surfaced() -> None:
    recorder = Recorder(status=401, text="invalid key")
    tool = RestApiTool(name="prices", url="https://api.example.com/prices")

    result = await _executor(ScriptedModel(), recorder).execute(tool, "price")

    assert result == "HTTP 401 error from prices: invalid key"


@pytest.mark.asyncio
async def test_transport_failure_yields_marker() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    executor = ApiToolExecutor(ScriptedModel(), transport=httpx.MockTransport(handler))
    tool = RestApiTool(name="prices", url="https://api.example.com/prices")

    result = await executor.execute(tool, "price")
    assert result.startswith("Failed to reach the API prices")


@pytest.mark.asyncio
async def test_long_results_are_truncated() -> None:
    recorder = Recorder(text="b" * 9000)
    tool = RestApiTool(name="dump", url="https://api.example.com/dump")

    result = await _executor(ScriptedModel(), recorder).execute(tool, "dump")
    assert result == "b" * 8000 + "..."


@pytest.mark.asyncio
async def test_invoke_is_relevance_gated() -> None:
    recorder = Recorder()
    tool = RestApiTool(name="weather", url="https://api.example.com/w", description="Forecasts")
    executor = _executor(ScriptedModel(), recorder)

    assert await executor.invoke(tool, "lovely day") is None
    assert recorder.requests == []
    assert await executor.invoke(tool, "weather in Paris") == '{"ok": true}'


def test_loose_api_type_is_resolved_on_load() -> None:
    agent = Agent.model_validate(
        {
            "id": "a1",
            "owner_id": "u",
            "name": "Bot",
            "api_tools": [
                {"name": "g", "url": "https://g", "apiType": "GraphQL", "schema": "type Q"},
                {"name": "r", "url": "https://r", "apiType": "soap", "schema": "ignored"},
                {"name": "o", "url": "https://o", "api_type": "openapi"},
            ],
        }
    )
    kinds = [type(t) for t in agent.api_tools]
    assert kinds == [GraphQLApiTool, RestApiTool, OpenApiTool]
    assert agent.api_tools[0].schema_text == "type Q"
    assert not hasattr(agent.api_tools[1], "schema_text")
