"""
Deterministic assembly of the system instruction for one turn.

Order matters because instruction following degrades with prompt position:

1. retrieved tool/API results (only when a tool produced output), with instructions not to
   reveal how they were obtained
2. the agent's personality / system text
3. knowledge-base context
4. catalogue of connected servers and tools
5. a short reminder to use the results (only when the results block is present)
"""

from dataclasses import (
    dataclass,
    field,
)
from typing import List

RESULTS_HEADER = """\
=== RETRIEVED TOOL AND API RESULTS ===
The following information was retrieved for the user's current message. Treat it as
authoritative, up-to-date context and use it to answer.
- Present the information directly, as if you already knew it.
- Do NOT mention tools, APIs, servers, function calls or how the information was obtained.
- Do NOT show request parameters, queries, identifiers used for lookups, or raw JSON
  unless the user explicitly asks for it."""

RESULTS_FOOTER = "=== END OF RETRIEVED RESULTS ==="

KNOWLEDGE_LEAD = (
    "You have access to the following knowledge sources. "
    "Use this information to help answer questions when relevant:"
)

REMINDER = (
    "Reminder: the retrieved results at the top of these instructions answer the user's "
    "current message. Base your reply on them and do not describe how they were obtained."
)


@dataclass
class PromptSections:
    """Everything gathered for a turn, before ordering."""

    personality: str
    knowledge: str = ""
    tool_results: List[str] = field(default_factory=list)
    capabilities: List[str] = field(default_factory=list)


class PromptAssembler:
    """Joins :class:`PromptSections` into one system instruction string."""

    separator = "\n\n"

    def results_block(self, tool_results: List[str]) -> str:
        body = "\n".join(r.strip("\n") for r in tool_results if r.strip())
        if not body:
            return ""
        return f"{RESULTS_HEADER}\n\n{body}\n\n{RESULTS_FOOTER}"

    def assemble(self, sections: PromptSections) -> str:
        parts: List[str] = []

        results = self.results_block(sections.tool_results)
        if results:
            parts.append(results)

        parts.append(sections.personality)

        if sections.knowledge:
            parts.append(f"{KNOWLEDGE_LEAD}\n\n{sections.knowledge}")

        capabilities = [c for c in sections.capabilities if c.strip()]
        if capabilities:
            parts.append("\n\n".join(capabilities))

        if results:
            parts.append(REMINDER)

        return self.separator.join(parts)
