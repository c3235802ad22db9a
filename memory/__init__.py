# Memory module - Per-session history
# Fixed size, explicit eviction, cleared on cancel

from .conversation import ConversationMemory, ConversationTurn, TurnRole

__all__ = [
    "ConversationMemory",
    "ConversationTurn",
    "TurnRole",
]
