"""
Execution Methods
-----------------
One contract for every privilege tier.

An ExecutionMethod binds an executor callable and an availability probe,
the same way a registry Tool binds its executor. Concrete tiers are built
by factories in `execution.shell` and `execution.stubs`.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional
import logging

from .actions import Action


@dataclass
class RawResult:
    """What a method reports for one invocation."""
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    code: Optional[int] = None

    @classmethod
    def ok(cls, output: str = "") -> "RawResult":
        return cls(success=True, output=output, code=0)

    @classmethod
    def fail(cls, error: str, code: Optional[int] = None) -> "RawResult":
        return cls(success=False, error=error, code=code)

    def __repr__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"RawResult({status} {self.output if self.success else self.error})"


@dataclass(frozen=True)
class MethodDescriptor:
    """Serializable snapshot of a method, as reported by the router."""
    id: str
    priority: int
    supported_actions: FrozenSet[str]
    available: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "priority": self.priority,
            "supported_actions": sorted(self.supported_actions),
            "available": self.available,
        }


def _always_available() -> bool:
    return True


@dataclass
class ExecutionMethod:
    """
    A privilege tier able to perform some action kinds.

    Each method defines:
    - A unique id and a priority (higher is tried first)
    - The set of action kinds it supports
    - An executor: Action -> RawResult (may raise)
    - An availability probe: () -> bool
    """
    id: str
    priority: int
    supported_actions: FrozenSet[str]
    executor: Callable[[Action], RawResult]
    probe: Callable[[], bool] = _always_available
    description: str = ""
    limitations: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self.supported_actions = frozenset(self.supported_actions)

    def supports(self, kind: str) -> bool:
        return kind in self.supported_actions

    def is_available(self) -> bool:
        """Run the availability probe. Probe exceptions mean unavailable."""
        try:
            return bool(self.probe())
        except Exception as e:
            logging.getLogger("droidpilot.methods").warning(
                f"Availability probe for {self.id} raised: {e}"
            )
            return False

    def execute(self, action: Action) -> RawResult:
        """Invoke the executor. Exceptions propagate to the router."""
        result = self.executor(action)
        if not isinstance(result, RawResult):
            # Bare return values count as success output
            return RawResult.ok("" if result is None else str(result))
        return result

    def describe(self, available: bool) -> MethodDescriptor:
        return MethodDescriptor(
            id=self.id,
            priority=self.priority,
            supported_actions=self.supported_actions,
            available=available,
        )

    def __repr__(self) -> str:
        return f"ExecutionMethod(id={self.id}, priority={self.priority})"


def sort_methods(methods: Iterable[ExecutionMethod]) -> List[ExecutionMethod]:
    """Priority descending, ties broken by id ascending."""
    return sorted(methods, key=lambda m: (-m.priority, m.id))


def check_unique_ids(methods: Iterable[ExecutionMethod]) -> None:
    """Raise ValueError if two methods share an id."""
    seen = set()
    for method in methods:
        if method.id in seen:
            raise ValueError(f"Duplicate execution method id: {method.id}")
        seen.add(method.id)
