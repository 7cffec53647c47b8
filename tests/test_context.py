"""Tests for prompt assembly."""

from companion.chat.context import (
    GENERIC_INSTRUCTION,
    build_messages,
    build_system_prompt,
    recent_turns,
)
from companion.chat.models import Message, Persona
from companion.memory.models import Memory


def _user_persona(**kwargs) -> Persona:
    return Persona(id="u1", type="user", name="Sam", **kwargs)


def _ai_persona(**kwargs) -> Persona:
    return Persona(id="a1", type="ai", name="Luna", **kwargs)


def _turns(n: int) -> list[Message]:
    roles = ["user", "assistant"]
    return [Message(role=roles[i % 2], content=f"turn {i}") for i in range(n)]


# -- build_system_prompt -------------------------------------------------------


class TestSystemPrompt:
    def test_generic_without_personas(self):
        prompt = build_system_prompt([], None, None)
        assert prompt.startswith(GENERIC_INSTRUCTION)
        assert "Guidelines:" in prompt

    def test_generic_with_only_one_persona(self):
        prompt = build_system_prompt([], _user_persona(), None)
        assert prompt.startswith(GENERIC_INSTRUCTION)

    def test_persona_details(self):
        ai = _ai_persona(age=28, gender="woman", backstory="A sailor", directive="Be brief")
        user = _user_persona(physical="Tall")
        prompt = build_system_prompt([], user, ai)

        assert "You are Luna, a 28-year-old woman." in prompt
        assert "Background: A sailor" in prompt
        assert "Response directive: Be brief" in prompt
        assert "You are talking to Sam, a person." in prompt
        assert "User's appearance: Tall" in prompt
        assert "Physical description" not in prompt

    def test_ai_defaults_when_unspecified(self):
        prompt = build_system_prompt([], _user_persona(), _ai_persona())
        assert "You are Luna, an AI." in prompt

    def test_memories_listed_in_order(self):
        memories = [Memory(content="Likes jazz"), Memory(content="Birthday in July")]
        prompt = build_system_prompt(memories, None, None)

        assert "Relevant context from previous conversations:" in prompt
        assert prompt.index("- Likes jazz") < prompt.index("- Birthday in July")

    def test_no_memory_section_when_empty(self):
        assert "Relevant context" not in build_system_prompt([], None, None)


# -- recent_turns --------------------------------------------------------------


class TestRecentTurns:
    def test_window_keeps_latest(self):
        turns = recent_turns(_turns(15), window=10)
        assert len(turns) == 10
        assert turns[0]["content"] == "turn 5"
        assert turns[-1]["content"] == "turn 14"

    def test_skips_system_and_error_messages(self):
        messages = [
            Message(role="user", content="hi"),
            Message(role="system", content="Failed to send message.", is_error=True),
            Message(role="assistant", content="hello"),
        ]
        assert recent_turns(messages) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_zero_window(self):
        assert recent_turns(_turns(3), window=0) == []


# -- build_messages ------------------------------------------------------------


class TestBuildMessages:
    def test_layout(self):
        result = build_messages("what now?", [], None, None, _turns(2))

        assert result[0]["role"] == "system"
        assert result[1:3] == [
            {"role": "user", "content": "turn 0"},
            {"role": "assistant", "content": "turn 1"},
        ]
        assert result[-1] == {"role": "user", "content": "what now?"}

    def test_history_bounded_by_window(self):
        result = build_messages("latest", [], None, None, _turns(30), window=10)
        assert len(result) == 12

    def test_empty_history(self):
        result = build_messages("hello", [], None, None, [])
        assert [m["role"] for m in result] == ["system", "user"]
