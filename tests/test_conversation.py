"""
Session History Tests
---------------------
Tests for ConversationMemory: ordering, eviction and LLM message shape.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from memory.conversation import ConversationMemory, ConversationTurn, TurnRole


class TestConversationMemory:

    def test_turns_keep_order(self):
        memory = ConversationMemory()
        memory.add_user_turn("open settings")
        memory.add_screen_turn("Home screen")
        memory.add_assistant_turn("Launching Settings")
        memory.add_action_turn("launch", "Success via root: done", True, call_id="c1")

        assert [t.role for t in memory.turns] == [
            TurnRole.USER, TurnRole.SCREEN, TurnRole.ASSISTANT, TurnRole.ACTION,
        ]

    def test_oldest_turns_evicted(self):
        memory = ConversationMemory(max_turns=3)
        for i in range(5):
            memory.add_user_turn(f"message {i}")

        assert [t.content for t in memory.turns] == ["message 2", "message 3", "message 4"]

    def test_token_budget(self):
        memory = ConversationMemory(max_tokens=10)
        memory.add_user_turn("x" * 40)
        memory.add_user_turn("y" * 20)

        assert len(memory) == 1
        assert memory.turns[0].content == "y" * 20

    def test_turns_is_a_copy(self):
        memory = ConversationMemory()
        memory.add_user_turn("a")

        memory.turns.clear()

        assert len(memory) == 1

    def test_clear(self):
        memory = ConversationMemory()
        memory.add_user_turn("a")
        memory.add_user_turn("b")

        assert memory.clear() == 2
        assert memory.is_empty()

    def test_summary(self):
        memory = ConversationMemory()
        assert memory.summarize() == "No session history."

        memory.add_user_turn("open settings")
        memory.add_action_turn("tap", "Action failed: denied", False)
        memory.add_action_turn("tap", "Success via root: ok", True)

        assert memory.summarize() == "Recent requests: open settings | Actions: 2 (1 failed)"


class TestLlmMessages:

    def test_roles_and_merging(self):
        memory = ConversationMemory()
        memory.add_user_turn("open settings")
        memory.add_screen_turn("Home screen")
        memory.add_assistant_turn("Tapping Settings")
        memory.add_action_turn("tap", "Success via root: ok", True, call_id="toolu_1")

        messages = memory.to_llm_messages()

        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[0]["content"] == "open settings\n\nCurrent screen state:\nHome screen"
        assert messages[2]["content"] == "Tool result for toolu_1:\nSuccess via root: ok"

    def test_dict_round_trip_keeps_action_fields(self):
        turn = ConversationTurn(
            role=TurnRole.ACTION, content="ok", action_kind="tap", call_id="c1", success=True,
        )

        restored = ConversationTurn.from_dict(turn.to_dict())

        assert restored.role == TurnRole.ACTION
        assert (restored.action_kind, restored.call_id, restored.success) == ("tap", "c1", True)
