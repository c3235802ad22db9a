"""
Claude Oracle
-------------
DecisionOracle backed by the Anthropic Messages API with tool use.
The API key is read from the environment only.

Each reply's text becomes Decision.text and each tool_use block becomes
one Action (tool names are mapped onto action kinds).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import os

import httpx

from execution.actions import Action, ActionKind
from memory.conversation import ConversationMemory, ConversationTurn

from .interfaces import Decision, OracleError


SYSTEM_PROMPT = """You control an Android phone on behalf of the user.
Each turn you receive the current screen elements (type, text, center
coordinates, clickable) and the results of your previous actions.

Rules:
- Prefer launch_app over navigating the home screen when you know the package
- Use open_url when a native app is not installed
- Tap the CENTER coordinates listed for an element
- Execute one action at a time, then wait for the next screen state
- When the task is done, reply with a short summary and use NO tools
- On a login or password screen, stop and ask the user
- If you cannot find an element after a few attempts, say so and ask for help"""


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "input_schema": {"type": "object", "properties": properties, "required": required},
    }


_NUMBER = {"type": "number"}

TOOLS: List[Dict[str, Any]] = [
    _tool("tap", "Tap at screen coordinates",
          {"x": _NUMBER, "y": _NUMBER}, ["x", "y"]),
    _tool("long_press", "Press and hold at screen coordinates",
          {"x": _NUMBER, "y": _NUMBER, "duration_ms": {"type": "integer"}}, ["x", "y"]),
    _tool("swipe", "Swipe from one point to another",
          {"start_x": _NUMBER, "start_y": _NUMBER, "end_x": _NUMBER, "end_y": _NUMBER},
          ["start_x", "start_y", "end_x", "end_y"]),
    _tool("type_text", "Type text into the focused field",
          {"text": {"type": "string", "description": "Text to type"}}, ["text"]),
    _tool("press_back", "Press the back button", {}, []),
    _tool("press_home", "Press the home button", {}, []),
    _tool("wait", "Wait for a specified duration",
          {"duration_ms": {"type": "integer", "default": 1000}}, []),
    _tool("launch_app", "Launch an installed app by its package name",
          {"package_name": {"type": "string", "description": "e.g. com.android.settings"}},
          ["package_name"]),
    _tool("open_url", "Open a URL in the default browser",
          {"url": {"type": "string", "description": "Full URL including https://"}}, ["url"]),
]

# Tool name -> action kind, where they differ
TOOL_KIND_MAP = {
    "press_back": ActionKind.NAVIGATE_BACK.value,
    "press_home": ActionKind.NAVIGATE_HOME.value,
    "launch_app": ActionKind.LAUNCH.value,
}

_COORDINATE_FIELDS = {"x", "y", "start_x", "start_y", "end_x", "end_y"}


@dataclass
class OracleConfig:
    """Configuration for the Claude oracle."""
    model: str = "claude-sonnet-4-20250514"
    base_url: str = "https://api.anthropic.com/v1"
    api_key_env: str = "ANTHROPIC_API_KEY"  # Environment variable name (NOT the actual key)
    anthropic_version: str = "2023-06-01"
    max_tokens: int = 1024
    timeout_seconds: float = 60.0
    system_prompt: str = SYSTEM_PROMPT
    headers: Dict[str, str] = field(default_factory=dict)


def tool_call_to_action(name: str, arguments: Dict[str, Any], call_id: Optional[str] = None) -> Action:
    """Map one tool_use block to an Action."""
    kind = TOOL_KIND_MAP.get(name, name)
    params: Dict[str, Any] = {}

    for key, value in (arguments or {}).items():
        if key == "package_name":
            key = "package"
        if key in _COORDINATE_FIELDS and isinstance(value, float):
            value = int(round(value))
        params[key] = value

    if kind == ActionKind.WAIT.value:
        params.setdefault("duration_ms", 1000)

    return Action(kind=kind, parameters=params, call_id=call_id)


def parse_response(data: Dict[str, Any]) -> Decision:
    """Turn a Messages API response body into a Decision."""
    content = data.get("content")
    if not isinstance(content, list):
        raise OracleError("Malformed oracle response: missing content")

    texts: List[str] = []
    actions: List[Action] = []
    for block in content:
        block_type = block.get("type")
        if block_type == "text":
            texts.append(block.get("text", ""))
        elif block_type == "tool_use":
            actions.append(tool_call_to_action(block.get("name", ""), block.get("input") or {}, block.get("id")))

    return Decision(text="".join(texts), actions=actions)


class ClaudeOracle:
    """
    Synchronous Messages API client used as a DecisionOracle.

    Rules:
    - API key loaded from environment only
    - Transport and HTTP errors raise OracleError
    """

    def __init__(
        self,
        config: Optional[OracleConfig] = None,
        client: Optional[httpx.Client] = None
    ):
        self.config = config or OracleConfig()
        self._logger = logging.getLogger("droidpilot.oracle.claude")
        self._client = client or httpx.Client(timeout=self.config.timeout_seconds)

        self._api_key = os.getenv(self.config.api_key_env)
        if not self._api_key:
            self._logger.warning(f"API key not found: {self.config.api_key_env}")

    @property
    def is_configured(self) -> bool:
        return self._api_key is not None

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "content-type": "application/json",
            "anthropic-version": self.config.anthropic_version,
        }
        headers.update(self.config.headers)
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    def build_request(self, history: Sequence[ConversationTurn], goal: str) -> Dict[str, Any]:
        memory = ConversationMemory(max_turns=max(1, len(history)))
        memory.extend(history)
        messages = memory.to_llm_messages()

        # The API requires the first message to come from the user
        if not messages or messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": goal})

        return {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "system": self.config.system_prompt,
            "tools": TOOLS,
            "messages": messages,
        }

    def decide(self, history: Sequence[ConversationTurn], goal: str) -> Decision:
        if not self.is_configured:
            raise OracleError(f"API key not configured: {self.config.api_key_env}")

        url = f"{self.config.base_url.rstrip('/')}/messages"
        payload = self.build_request(history, goal)

        try:
            response = self._client.post(url, json=payload, headers=self._get_headers())
        except httpx.TimeoutException:
            raise OracleError("Oracle request timed out")
        except httpx.HTTPError as e:
            raise OracleError(f"Network error: {e}")

        if response.status_code == 429:
            raise OracleError("Rate limit exceeded", status_code=429)
        if response.status_code in (401, 403):
            raise OracleError("Authentication failed", status_code=response.status_code)
        if response.status_code >= 400:
            raise OracleError(
                f"Oracle request failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise OracleError("Malformed oracle response: not JSON")

        decision = parse_response(data)
        self._logger.info(f"Oracle replied with {len(decision.actions)} action(s)")
        return decision

    def close(self) -> None:
        self._client.close()
