"""Tests for system-instruction ordering."""

from agentdesk.agent.prompt_assembler import (
    KNOWLEDGE_LEAD,
    REMINDER,
    RESULTS_FOOTER,
    RESULTS_HEADER,
    PromptAssembler,
    PromptSections,
)

PERSONALITY = 'You are an AI assistant named "Ada". Be helpful and friendly.'


def test_personality_alone_is_returned_verbatim() -> None:
    assert PromptAssembler().assemble(PromptSections(personality=PERSONALITY)) == PERSONALITY


def test_results_come_first_and_reminder_last() -> None:
    prompt = PromptAssembler().assemble(
        PromptSections(
            personality=PERSONALITY,
            knowledge="## Relevant Knowledge (from indexed sources):\n[Relevance: 90%]\nFact",
            tool_results=["\n--- Result from prices ---\nETH is 3000"],
            capabilities=["## Available API Tools:\n- **prices** [GET] https://api"],
        )
    )

    results_at = prompt.index(RESULTS_HEADER)
    personality_at = prompt.index(PERSONALITY)
    knowledge_at = prompt.index(KNOWLEDGE_LEAD)
    capabilities_at = prompt.index("## Available API Tools:")
    reminder_at = prompt.index(REMINDER)

    assert results_at == 0
    assert results_at < prompt.index("ETH is 3000") < prompt.index(RESULTS_FOOTER) < personality_at
    assert personality_at < knowledge_at < capabilities_at < reminder_at
    assert prompt.endswith(REMINDER)


def test_no_reminder_without_results() -> None:
    prompt = PromptAssembler().assemble(
        PromptSections(personality=PERSONALITY, knowledge="facts", tool_results=["", "  "])
    )
    assert RESULTS_HEADER not in prompt
    assert REMINDER not in prompt
    assert prompt == f"{PERSONALITY}\n\n{KNOWLEDGE_LEAD}\n\nfacts"
