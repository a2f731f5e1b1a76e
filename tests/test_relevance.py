"""Tests for the relevance gate shared by MCP servers and API tools."""

import pytest

from agentdesk.core.schema import (
    GraphQLApiTool,
    RestApiTool,
    ToolServerConfig,
)
from agentdesk.tools.relevance import (
    ToolKind,
    ToolProfile,
    is_relevant,
    profile_for,
    score,
)


@pytest.mark.parametrize(
    "message",
    ["", "hi", "what's the weather like?", "1234", "tell me a joke about penguins"],
)
def test_always_marker_wins_regardless_of_message(message: str) -> None:
    server = ToolServerConfig(
        name="zz", url="https://x.example", instructions="Always consult this server"
    )
    assert is_relevant(server, message)


def test_name_mentioned_in_message() -> None:
    server = ToolServerConfig(name="Context7", url="https://x.example")
    report = score(profile_for(server), "can you ask context7 about react?")
    assert report.name_mentioned
    assert report.relevant


def test_keyword_is_substring_match() -> None:
    server = ToolServerConfig(name="zz", url="https://x.example", description="Weather forecasts")
    # "forecasts" from the description is contained in the message
    assert is_relevant(server, "Any forecasts for Berlin?")
    # words of three characters or fewer never count
    tiny = ToolServerConfig(name="zz", url="https://x.example", description="the fox")
    assert not is_relevant(tiny, "the fox jumped")


def test_doc_query_needs_doc_like_tool() -> None:
    docs = ToolServerConfig(name="zz", url="https://x.example", description="Library docs")
    other = ToolServerConfig(name="zz", url="https://x.example", description="Payments")
    message = "how to paginate results"
    assert score(profile_for(docs), message).doc_query
    assert not score(profile_for(other), message).doc_query
    assert not is_relevant(other, message)


def test_explicit_use_only_for_api_tools() -> None:
    message = "please call the api for me"
    rest = RestApiTool(name="zz", url="https://api.example")
    mcp = ToolServerConfig(name="zz", url="https://x.example")
    assert score(profile_for(rest), message).explicit_use
    assert not score(profile_for(mcp), message).explicit_use


def test_graphql_data_verb() -> None:
    tool = GraphQLApiTool(name="zz", url="https://gql.example")
    assert profile_for(tool).kind is ToolKind.GRAPHQL
    assert score(profile_for(tool), "latest entries please").graphql_data_query

    rest = RestApiTool(name="zz", url="https://api.example")
    assert not score(profile_for(rest), "latest entries please").graphql_data_query


def test_unrelated_message_is_not_relevant() -> None:
    profile = ToolProfile(name="ens", description="Domain registry", kind=ToolKind.REST)
    assert not score(profile, "what a lovely day").relevant
