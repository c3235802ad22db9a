"""
Session History
---------------
Ordered record of one workflow session: the goal, screen observations,
oracle replies, action results and user clarifications.

Rules:
- Append only while a session runs
- Explicit eviction (oldest first) past max_turns
- Cleared on cancel
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional
import logging


class TurnRole(Enum):
    """Role in a session turn."""
    USER = auto()       # Goal and clarification answers
    ASSISTANT = auto()  # Oracle reply text
    SCREEN = auto()     # Screen context observation
    ACTION = auto()     # Result of one routed action
    SYSTEM = auto()


@dataclass
class ConversationTurn:
    """A single entry in the session history."""
    role: TurnRole
    content: str
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    # For action turns
    action_kind: Optional[str] = None
    call_id: Optional[str] = None
    success: Optional[bool] = None

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "role": self.role.name.lower(),
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "action_kind": self.action_kind,
            "call_id": self.call_id,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ConversationTurn":
        return cls(
            role=TurnRole[str(data.get("role", "user")).upper()],
            content=str(data.get("content", "")),
            metadata=dict(data.get("metadata") or {}),
            action_kind=data.get("action_kind"),
            call_id=data.get("call_id"),
            success=data.get("success"),
        )

    def to_llm_message(self) -> Dict:
        """Convert to LLM message format."""
        if self.role == TurnRole.ASSISTANT:
            return {"role": "assistant", "content": self.content}
        if self.role == TurnRole.SCREEN:
            return {"role": "user", "content": f"Current screen state:\n{self.content}"}
        if self.role == TurnRole.ACTION:
            label = self.call_id or self.action_kind or "action"
            return {"role": "user", "content": f"Tool result for {label}:\n{self.content}"}
        return {"role": "user", "content": self.content}

    @property
    def token_estimate(self) -> int:
        """Rough estimate of tokens (4 chars ≈ 1 token)."""
        return max(1, len(self.content) // 4)

    def __repr__(self) -> str:
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"Turn({self.role.name}: {preview})"


@dataclass
class ConversationMemory:
    """
    Session history.

    - Fixed size (max_turns)
    - Explicit eviction (oldest first)
    - Optional token budget enforcement
    """

    max_turns: int = 200
    max_tokens: Optional[int] = None

    def __post_init__(self):
        self._turns: List[ConversationTurn] = []
        self._logger = logging.getLogger("droidpilot.memory.history")

    def add_user_turn(self, content: str, metadata: Optional[Dict] = None) -> ConversationTurn:
        """Add a user message (goal or clarification answer)."""
        return self._add_turn(ConversationTurn(
            role=TurnRole.USER,
            content=content,
            metadata=metadata or {}
        ))

    def add_assistant_turn(self, content: str, metadata: Optional[Dict] = None) -> ConversationTurn:
        """Add an oracle reply."""
        return self._add_turn(ConversationTurn(
            role=TurnRole.ASSISTANT,
            content=content,
            metadata=metadata or {}
        ))

    def add_screen_turn(self, content: str) -> ConversationTurn:
        """Add a screen context observation."""
        return self._add_turn(ConversationTurn(role=TurnRole.SCREEN, content=content))

    def add_action_turn(
        self,
        action_kind: str,
        result_text: str,
        success: bool,
        call_id: Optional[str] = None,
        metadata: Optional[Dict] = None
    ) -> ConversationTurn:
        """Add the textual result of one routed action."""
        return self._add_turn(ConversationTurn(
            role=TurnRole.ACTION,
            content=result_text,
            action_kind=action_kind,
            call_id=call_id,
            success=success,
            metadata=metadata or {}
        ))

    def extend(self, turns: Iterable[ConversationTurn]) -> None:
        """Append prior turns in order."""
        for turn in turns:
            self._add_turn(turn)

    def _add_turn(self, turn: ConversationTurn) -> ConversationTurn:
        """Add a turn and enforce limits."""
        self._turns.append(turn)
        self._enforce_limits()
        self._logger.debug(f"Added turn: {turn.role.name}, total: {len(self._turns)}")
        return turn

    def _enforce_limits(self) -> None:
        """Enforce turn count and token limits."""
        while len(self._turns) > self.max_turns:
            removed = self._turns.pop(0)
            self._logger.debug(f"Evicted turn (count limit): {removed}")

        if self.max_tokens is None:
            return
        while self.total_tokens > self.max_tokens and len(self._turns) > 1:
            removed = self._turns.pop(0)
            self._logger.debug(f"Evicted turn (token limit): {removed}")

    @property
    def total_tokens(self) -> int:
        """Estimate total tokens in memory."""
        return sum(turn.token_estimate for turn in self._turns)

    @property
    def turns(self) -> List[ConversationTurn]:
        """Get all turns (read-only copy)."""
        return self._turns.copy()

    def get_action_turns(self) -> List[ConversationTurn]:
        """Get only action result turns."""
        return [t for t in self._turns if t.role == TurnRole.ACTION]

    def to_llm_messages(self) -> List[Dict]:
        """Convert history to LLM messages, merging consecutive same-role entries."""
        messages: List[Dict] = []
        for turn in self._turns:
            message = turn.to_llm_message()
            if messages and messages[-1]["role"] == message["role"]:
                messages[-1]["content"] += "\n\n" + message["content"]
            else:
                messages.append(message)
        return messages

    def summarize(self) -> str:
        """One-line summary of requests and actions."""
        if not self._turns:
            return "No session history."

        parts = []
        user_turns = [t for t in self._turns if t.role == TurnRole.USER]
        if user_turns:
            parts.append(f"Recent requests: {'; '.join(t.content for t in user_turns[-3:])}")

        action_turns = self.get_action_turns()
        if action_turns:
            failed = sum(1 for t in action_turns if t.success is False)
            parts.append(f"Actions: {len(action_turns)} ({failed} failed)")

        return " | ".join(parts)

    def clear(self) -> int:
        """Clear all history. Returns number of turns cleared."""
        count = len(self._turns)
        self._turns = []
        self._logger.debug(f"Cleared {count} turns from history")
        return count

    def __len__(self) -> int:
        return len(self._turns)

    def is_empty(self) -> bool:
        """Check if history has no turns."""
        return len(self._turns) == 0
