# Oracle module - Decision oracle and screen context providers
# The oracle decides what to do next; it never touches the device

from .interfaces import Decision, OracleError, ScreenElement, ScreenProviderError, format_screen_context
from .scripted import ScriptedOracle
from .screen import StaticScreenProvider, UiDumpScreenProvider, parse_ui_dump
from .claude import ClaudeOracle, OracleConfig

__all__ = [
    "Decision", "OracleError", "ScreenElement", "ScreenProviderError", "format_screen_context",
    "ScriptedOracle",
    "StaticScreenProvider", "UiDumpScreenProvider", "parse_ui_dump",
    "ClaudeOracle", "OracleConfig",
]
