"""
Execution Results
-----------------
The single result returned by the router for each submitted Action.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.errors import ErrorCategory, ErrorInfo


@dataclass
class AttemptRecord:
    """One invocation of one method."""
    method_id: str
    attempt: int                       # 1-based, per method
    success: bool
    category: Optional[ErrorCategory] = None
    message: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method_id": self.method_id,
            "attempt": self.attempt,
            "success": self.success,
            "category": self.category.name if self.category else None,
            "message": self.message,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class ExecutionResult:
    """
    Outcome of routing one Action.

    Invariant: success implies method_used is set.
    """
    success: bool
    method_used: Optional[str] = None
    output: Optional[str] = None
    error: Optional[ErrorInfo] = None
    duration_ms: float = 0.0
    retry_count: int = 0
    attempts: List[AttemptRecord] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.success and not self.method_used:
            raise ValueError("A successful ExecutionResult requires method_used")

    def attempts_for(self, method_id: str) -> int:
        """Number of invocations recorded for a method."""
        return sum(1 for a in self.attempts if a.method_id == method_id)

    def summary(self) -> str:
        """Plain-text line appended to session history."""
        if self.success:
            text = self.output or "done"
            return f"Success via {self.method_used}: {text}"
        message = self.error.message if self.error else "unknown error"
        return f"Action failed: {message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "method_used": self.method_used,
            "output": self.output,
            "error": {
                "category": self.error.category.name,
                "message": self.error.message,
                "retryable": self.error.retryable,
            } if self.error else None,
            "duration_ms": round(self.duration_ms, 1),
            "retry_count": self.retry_count,
            "attempts": [a.to_dict() for a in self.attempts],
        }

    def __repr__(self) -> str:
        status = "✓" if self.success else "✗"
        detail = self.method_used if self.success else self.error
        return f"ExecutionResult({status} {detail})"
