"""Tests for API type detection."""

import json

import httpx
import pytest

from agentdesk.core.schema import ApiKind
from agentdesk.tools.api_detection import (
    describe_openapi_paths,
    detect_api,
)

INTROSPECTION = {
    "data": {
        "__schema": {
            "queryType": {
                "fields": [
                    {
                        "name": "domains",
                        "description": "List domains",
                        "args": [{"name": "first", "type": {"name": "Int", "kind": "SCALAR"}}],
                        "type": {"name": None, "kind": "LIST", "ofType": {"name": "Domain"}},
                    },
                    {"name": "ping", "args": [], "type": {"name": "String", "kind": "SCALAR"}},
                ]
            }
        }
    }
}

OPENAPI_DOC = {
    "openapi": "3.0.1",
    "paths": {
        "/pets": {"get": {"summary": "List pets"}, "post": {"description": "Add a pet"}},
        "/pets/{id}": {"get": {}, "parameters": []},
    },
}


@pytest.mark.asyncio
async def test_graphql_introspection() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert "__schema" in json.loads(request.content)["query"]
        return httpx.Response(200, json=INTROSPECTION)

    result = await detect_api(
        "https://api.example.com/graphql", api_key="k", transport=httpx.MockTransport(handler)
    )

    assert result.api_type is ApiKind.GRAPHQL
    assert result.confidence == "high"
    assert result.schema_text == (
        "GraphQL Query Types:\ndomains(first: Int): Domain - List domains\nping(): String"
    )
    assert seen[0].headers["Authorization"] == "Bearer k"


@pytest.mark.asyncio
async def test_openapi_document_on_origin() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(400, json={"error": "not graphql"})
        if request.url.path == "/swagger.json":
            return httpx.Response(200, json=OPENAPI_DOC)
        return httpx.Response(404)

    result = await detect_api(
        "https://pets.example.com/v1/pets", transport=httpx.MockTransport(handler)
    )

    assert result.api_type is ApiKind.OPENAPI
    assert result.confidence == "high"
    assert result.message == "OpenAPI 3.0.1 specification found"
    assert result.schema_text.startswith("OpenAPI Endpoints:\n/pets\n  GET: List pets\n  POST: Add a pet")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "url, kind, confidence",
    [
        ("https://api.thegraph.com/subgraphs/name/ens", ApiKind.GRAPHQL, "medium"),
        ("https://example.com/swagger/v1", ApiKind.OPENAPI, "medium"),
        ("https://example.com/api/prices", ApiKind.REST, "low"),
    ],
)
async def test_url_hints_when_probes_fail(url, kind, confidence) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    result = await detect_api(url, transport=httpx.MockTransport(handler))

    assert result.api_type is kind
    assert result.confidence == confidence
    assert result.schema_text is None


def test_openapi_paths_are_capped() -> None:
    doc = {"paths": {f"/p{i}": {"get": {"summary": str(i)}} for i in range(30)}}
    text = describe_openapi_paths(doc)
    assert "/p14\n" in text
    assert "/p15" not in text
