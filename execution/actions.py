"""
Actions
-------
The primitive UI actions the oracle emits and the router dispatches.

An Action is immutable. Retries never mutate it; the retry policy builds
a perturbed copy with `with_parameters()`.

Parameters of the known kinds are validated with pydantic before any
execution method is invoked.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Type, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ActionKind(str, Enum):
    """Known action kinds. Any other string is a valid, unsupported kind."""
    TAP = "tap"
    LONG_PRESS = "long_press"
    SWIPE = "swipe"
    TYPE_TEXT = "type_text"
    KEY_EVENT = "key_event"
    WAIT = "wait"
    LAUNCH = "launch"
    OPEN_URL = "open_url"
    NAVIGATE_BACK = "navigate_back"
    NAVIGATE_HOME = "navigate_home"
    QUERY_CAPABILITY = "query_capability"


def _kind_value(kind: Union[ActionKind, str]) -> str:
    return kind.value if isinstance(kind, ActionKind) else str(kind)


@dataclass(frozen=True)
class Action:
    """One primitive request: a kind plus read-only parameters."""
    kind: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "kind", _kind_value(self.kind))
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @classmethod
    def create(cls, kind: Union[ActionKind, str], **parameters: Any) -> "Action":
        """Convenience constructor: Action.create("tap", x=10, y=20)."""
        return cls(kind=_kind_value(kind), parameters=parameters, call_id=str(uuid.uuid4())[:8])

    def with_parameters(self, parameters: Mapping[str, Any]) -> "Action":
        """Copy with replaced parameters, same kind and call id."""
        return Action(kind=self.kind, parameters=dict(parameters), call_id=self.call_id)

    def describe(self) -> str:
        """Short human-readable form used in history and events."""
        if not self.parameters:
            return self.kind
        args = ", ".join(f"{k}={v!r}" for k, v in self.parameters.items())
        return f"{self.kind}({args})"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "parameters": dict(self.parameters), "call_id": self.call_id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Action":
        if "kind" not in data:
            raise ValueError("Action requires a 'kind'")
        return cls(
            kind=data["kind"],
            parameters=data.get("parameters") or {},
            call_id=data.get("call_id"),
        )

    def __repr__(self) -> str:
        return f"Action({self.describe()})"


# Parameter schemas

class _ActionParams(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_ms: Optional[int] = Field(None, gt=0, description="Per-attempt timeout")


class TapParams(_ActionParams):
    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)


class LongPressParams(TapParams):
    duration_ms: int = Field(1000, gt=0)


class SwipeParams(_ActionParams):
    start_x: int = Field(..., ge=0)
    start_y: int = Field(..., ge=0)
    end_x: int = Field(..., ge=0)
    end_y: int = Field(..., ge=0)
    duration_ms: int = Field(300, gt=0)


class TypeTextParams(_ActionParams):
    text: str = Field(..., min_length=1)
    encoding: Literal["plain", "escaped"] = "plain"


class KeyEventParams(_ActionParams):
    key_code: Union[int, str] = Field(..., description="Numeric code or KEYCODE_* name")


class WaitParams(_ActionParams):
    duration_ms: int = Field(..., ge=0, le=60000)


class LaunchParams(_ActionParams):
    package: str = Field(..., min_length=1)
    activity: Optional[str] = None


class OpenUrlParams(_ActionParams):
    url: str = Field(..., pattern=r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class NoParams(_ActionParams):
    pass


class QueryCapabilityParams(_ActionParams):
    capability: Optional[str] = None


PARAMETER_SCHEMAS: Dict[str, Type[_ActionParams]] = {
    ActionKind.TAP.value: TapParams,
    ActionKind.LONG_PRESS.value: LongPressParams,
    ActionKind.SWIPE.value: SwipeParams,
    ActionKind.TYPE_TEXT.value: TypeTextParams,
    ActionKind.KEY_EVENT.value: KeyEventParams,
    ActionKind.WAIT.value: WaitParams,
    ActionKind.LAUNCH.value: LaunchParams,
    ActionKind.OPEN_URL.value: OpenUrlParams,
    ActionKind.NAVIGATE_BACK.value: NoParams,
    ActionKind.NAVIGATE_HOME.value: NoParams,
    ActionKind.QUERY_CAPABILITY.value: QueryCapabilityParams,
}


def _check_parameters(action: Action) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    schema = PARAMETER_SCHEMAS.get(action.kind)
    if schema is None:
        return dict(action.parameters), None

    try:
        model = schema.model_validate(dict(action.parameters))
    except ValidationError as e:
        problems = []
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"]) or action.kind
            problems.append(f"{location}: {err['msg']}")
        return None, f"Invalid parameters for {action.kind}: " + "; ".join(problems)

    return model.model_dump(exclude_unset=True), None


def validate_action(action: Action) -> Tuple[bool, Optional[str]]:
    """
    Validate action parameters against the schema for its kind.

    Returns (is_valid, error_message). Kinds without a schema are valid.
    """
    params, error = _check_parameters(action)
    return params is not None, error


def normalize_action(action: Action) -> Tuple[Optional[Action], Optional[str]]:
    """
    Validate and coerce parameters (e.g. "100" -> 100).

    Returns (action, None) with schema-typed parameters, or (None, error).
    Kinds without a schema come back unchanged.
    """
    params, error = _check_parameters(action)
    if params is None:
        return None, error
    if action.kind not in PARAMETER_SCHEMAS:
        return action, None
    return action.with_parameters(params), None


def is_known_kind(kind: str) -> bool:
    return kind in PARAMETER_SCHEMAS
