"""
Model interface for agentdesk.

This module is the only place that *directly* calls an LLM.  Everything else (tool loop, API tool
executor, orchestrator) stays model-agnostic and talks to a :class:`BaseModelClient`.

We support two back-ends out of the box:

1. **OpenAI** chat completions (web search via the search-preview models).
2. **Anthropic** messages (web search via the server-side ``web_search`` tool).

Additional providers can be added by subclassing :class:`BaseModelClient` and registering via
:func:`register_model`.
"""

import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Sequence,
    Type,
)

from agentdesk.config import settings
from agentdesk.core.schema import (
    Content,
    GenerationConfig,
)

logger = logging.getLogger(__name__)


class ModelNotConfiguredError(RuntimeError):
    """Raised when the selected backend has no credential or is unknown."""


class ModelCallError(RuntimeError):
    """Raised when a backend request fails."""


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_MODEL_REGISTRY: dict[str, Type["BaseModelClient"]] = {}


def register_model(name: str) -> Callable:
    """Decorator to register a model backend class under *name*."""

    def wrapper(cls: Type["BaseModelClient"]) -> Type["BaseModelClient"]:
        _MODEL_REGISTRY[name] = cls
        return cls

    return wrapper


def load_model(name: str | None = None) -> "BaseModelClient":
    """
    Factory that returns an instantiated model backend.

    Fallback order:
    1. *name* arg
    2. ``settings.MODEL_PROVIDER`` env option
    3. default: ``"openai"``
    """

    target = name or getattr(settings, "MODEL_PROVIDER", "openai")
    cls = _MODEL_REGISTRY.get(target.lower())
    if cls is None:
        raise ModelNotConfiguredError(f"Model provider '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BaseModelClient(ABC):
    """Abstract backend that turns ``{role, parts}`` contents into reply text."""

    @abstractmethod
    async def generate(self, contents: Sequence[Content], config: GenerationConfig) -> str:
        """Return the model's text reply, or ``""`` when it produced nothing."""

    async def ask(
        self, prompt: str, max_output_tokens: int = 512, web_search: bool = False
    ) -> str:
        """Single user-turn helper used by the auxiliary calls of a turn."""
        return await self.generate(
            [Content.text("user", prompt)],
            GenerationConfig(max_output_tokens=max_output_tokens, web_search=web_search),
        )


def is_openai_search_model(model: str) -> bool:
    return "search" in model.lower()


def _flatten(content: Content) -> str:
    return "\n".join(part.text for part in content.parts)


# ---------------------------------------------------------------------------
# Concrete backends
# ---------------------------------------------------------------------------
@register_model("openai")
class OpenAIModel(BaseModelClient):
    """OpenAI chat-completions backend."""

    def __init__(self) -> None:
        if not settings.OPENAI_API_KEY:
            raise ModelNotConfiguredError("OPENAI_API_KEY is not set.")
        import openai  # pylint: disable=import-outside-toplevel

        self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)

    async def generate(self, contents: Sequence[Content], config: GenerationConfig) -> str:
        messages: List[Dict[str, Any]] = []
        if config.system_instruction:
            messages.append({"role": "system", "content": config.system_instruction})
        for content in contents:
            role = "assistant" if content.role == "model" else "user"
            messages.append({"role": role, "content": _flatten(content)})

        # An explicitly chosen model wins; the search model only replaces the default
        model = config.model or (
            settings.OPENAI_SEARCH_MODEL if config.web_search else settings.OPENAI_MODEL
        )
        search_model = is_openai_search_model(model)
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": config.max_output_tokens,
        }
        if config.web_search and search_model:
            kwargs["web_search_options"] = {}
        elif config.web_search:
            logger.info("Model %s does not support web search; answering without it", model)

        if config.temperature is not None:
            if search_model:
                # Search models reject sampling parameters
                logger.info("Dropping temperature=%s for search model %s", config.temperature, model)
            else:
                kwargs["temperature"] = config.temperature

        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("OpenAI request error: %s", exc)
            raise ModelCallError(f"Error calling OpenAI: {exc}") from exc

        if not resp.choices:
            return ""
        content = resp.choices[0].message.content or ""
        logger.debug("OpenAI response: %s", content[:300])
        return content.strip()


@register_model("anthropic")
class AnthropicModel(BaseModelClient):
    """Anthropic messages backend."""

    WEB_SEARCH_TOOL: Dict[str, Any] = {
        "type": "web_search_20250305",
        "name": "web_search",
        "max_uses": 3,
    }

    def __init__(self) -> None:
        if not settings.ANTHROPIC_API_KEY:
            raise ModelNotConfiguredError("ANTHROPIC_API_KEY is not set.")
        import anthropic  # pylint: disable=import-outside-toplevel

        self._client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)

    @staticmethod
    def _messages(contents: Sequence[Content]) -> List[Dict[str, str]]:
        """Anthropic needs alternating roles starting with the user."""
        messages: List[Dict[str, str]] = []
        for content in contents:
            role = "assistant" if content.role == "model" else "user"
            text = _flatten(content)
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += "\n\n" + text
            else:
                messages.append({"role": role, "content": text})
        while messages and messages[0]["role"] != "user":
            messages.pop(0)
        return messages

    async def generate(self, contents: Sequence[Content], config: GenerationConfig) -> str:
        kwargs: Dict[str, Any] = {
            "model": config.model or settings.ANTHROPIC_MODEL,
            "max_tokens": config.max_output_tokens,
            "messages": self._messages(contents),
        }
        if config.system_instruction:
            kwargs["system"] = config.system_instruction
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.web_search:
            kwargs["tools"] = [self.WEB_SEARCH_TOOL]

        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Anthropic request error: %s", exc)
            raise ModelCallError(f"Error calling Anthropic: {exc}") from exc

        # Web search interleaves tool-use blocks with text; keep only the text
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        logger.debug("Anthropic response: %s", text[:300])
        return text.strip()


# ---------------------------------------------------------------------------
# Helpers for model-produced text
# ---------------------------------------------------------------------------
_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*(.*?)```", re.DOTALL)


def strip_code_fences(content: str) -> str:
    """Return the body of the first fenced block, or *content* without stray fence markers."""
    match = _FENCE_RE.search(content)
    if match:
        return match.group(1).strip()
    return re.sub(r"```[a-zA-Z0-9_-]*", "", content).strip()


def sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        content = strip_code_fences(content)

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Cut to the outermost balanced object, ignoring braces inside strings
    open_idx = content.find("{")
    if open_idx < 0:
        return content.strip()
    depth = 0
    in_string = False
    escaped = False
    for i in range(open_idx, len(content)):
        ch = content[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return content[open_idx : i + 1]
    return content[open_idx:]
