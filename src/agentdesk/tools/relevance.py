"""
Relevance gate: should a configured tool be called for this message?

One scorer serves both MCP servers and REST/GraphQL/OpenAPI tools so the two call sites cannot
drift apart.  The gate is deliberately over-inclusive: a false positive costs one wasted call,
while a false negative silently starves the model of context it needed.  Keep it that way when
tuning the word lists below.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union

from agentdesk.core.schema import (
    GraphQLApiTool,
    OpenApiTool,
    RestApiTool,
    ToolServerConfig,
)

logger = logging.getLogger(__name__)

ALWAYS_MARKERS = ("always", "every question", "all questions")

QUERY_PATTERNS = (
    "docs",
    "documentation",
    "how to",
    "what is",
    "tell me",
    "tell me about",
    "looking at",
    "using",
    "search",
    "find",
    "help",
    "show",
    "get",
    "explain",
)

DOC_HINTS = ("doc", "search", "library")

EXPLICIT_USE_PATTERNS = (
    "use the api",
    "use the tool",
    "call the api",
    "call the tool",
    "query the api",
    "using the api",
    "using the tool",
    "with the api",
    "use api",
)

DATA_VERBS = ("get", "fetch", "list", "recent", "latest", "show", "query")

_PUNCTUATION = ".,:;!?()[]{}\"'`"


class ToolKind(str, Enum):
    """What kind of configured tool is being scored."""

    MCP = "mcp"
    REST = "rest"
    GRAPHQL = "graphql"
    OPENAPI = "openapi"


@dataclass(frozen=True)
class ToolProfile:
    """The text of a configured tool that relevance is judged on."""

    name: str
    description: str = ""
    instructions: str = ""
    kind: ToolKind = ToolKind.MCP

    @property
    def text(self) -> str:
        return " ".join([self.name, self.description, self.instructions]).lower()


@dataclass(frozen=True)
class RelevanceReport:
    """Which signals fired; ``relevant`` is their logical OR."""

    always_call: bool = False
    name_mentioned: bool = False
    keyword_match: bool = False
    doc_query: bool = False
    explicit_use: bool = False
    graphql_data_query: bool = False

    @property
    def relevant(self) -> bool:
        return (
            self.always_call
            or self.name_mentioned
            or self.keyword_match
            or self.doc_query
            or self.explicit_use
            or self.graphql_data_query
        )


ConfiguredTool = Union[ToolServerConfig, RestApiTool, GraphQLApiTool, OpenApiTool]


def profile_for(config: ConfiguredTool) -> ToolProfile:
    """Build the scorer input for an MCP server or API tool config."""
    if isinstance(config, ToolServerConfig):
        kind = ToolKind.MCP
    else:
        kind = ToolKind(config.api_type)
    return ToolProfile(
        name=config.name or "",
        description=config.description or "",
        instructions=config.instructions or "",
        kind=kind,
    )


def score(profile: ToolProfile, message: str) -> RelevanceReport:
    """Evaluate every relevance signal for *profile* against *message*."""
    msg = message.lower()
    tool_text = profile.text
    instructions = profile.instructions.lower()

    always_call = any(marker in instructions for marker in ALWAYS_MARKERS)
    name = profile.name.strip().lower()
    name_mentioned = bool(name) and name in msg

    keywords = {word.strip(_PUNCTUATION) for word in tool_text.split()}
    keyword_match = any(len(word) > 3 and word in msg for word in keywords)

    is_query = any(pattern in msg for pattern in QUERY_PATTERNS)
    doc_related = any(hint in tool_text for hint in DOC_HINTS)
    doc_query = is_query and doc_related

    explicit_use = False
    graphql_data_query = False
    if profile.kind is not ToolKind.MCP:
        explicit_use = any(pattern in msg for pattern in EXPLICIT_USE_PATTERNS)
        if profile.kind is ToolKind.GRAPHQL:
            graphql_data_query = any(verb in msg for verb in DATA_VERBS)

    return RelevanceReport(
        always_call=always_call,
        name_mentioned=name_mentioned,
        keyword_match=keyword_match,
        doc_query=doc_query,
        explicit_use=explicit_use,
        graphql_data_query=graphql_data_query,
    )


def is_relevant(config: ConfiguredTool, user_message: str) -> bool:
    """Pure, I/O-free decision whether *config* is worth invoking for *user_message*."""
    profile = profile_for(config)
    report = score(profile, user_message)
    logger.debug(
        "Relevance of %s '%s': %s -> %s", profile.kind.value, profile.name, report, report.relevant
    )
    return report.relevant
