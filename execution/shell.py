"""
Shell Tiers
-----------
Privileged execution methods built from one adb shell channel.

Tiers (priority):
- shizuku_adb (1000): plain `adb shell`
- shizuku      (900): commands wrapped in Shizuku's `rish -c`
- root         (800): commands wrapped in `su -c`
- accessibility (700): gestures dispatched through a bridge object

Rules:
- No shell=True; argv lists only
- Every argument is shell-quoted; adb and the su/rish wrappers re-parse
  their command line in a device shell
- Timeouts enforced per call
- Non-zero exit codes become failed RawResults, transport errors raise
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional
import logging
import shlex
import subprocess

from core.cancellation import current_token, sleep_ms

from .actions import Action, ActionKind
from .methods import ExecutionMethod, RawResult


logger = logging.getLogger("droidpilot.shell")


SHELL_ACTIONS: FrozenSet[str] = frozenset(k.value for k in ActionKind)

SHIZUKU_ACTIONS: FrozenSet[str] = frozenset({
    ActionKind.TAP.value,
    ActionKind.LONG_PRESS.value,
    ActionKind.SWIPE.value,
    ActionKind.TYPE_TEXT.value,
    ActionKind.KEY_EVENT.value,
    ActionKind.WAIT.value,
    ActionKind.LAUNCH.value,
    ActionKind.NAVIGATE_BACK.value,
    ActionKind.NAVIGATE_HOME.value,
})

ACCESSIBILITY_ACTIONS: FrozenSet[str] = frozenset({
    ActionKind.TAP.value,
    ActionKind.LONG_PRESS.value,
    ActionKind.SWIPE.value,
    ActionKind.TYPE_TEXT.value,
    ActionKind.WAIT.value,
    ActionKind.NAVIGATE_BACK.value,
    ActionKind.NAVIGATE_HOME.value,
})

KEYCODE_HOME = 3
KEYCODE_BACK = 4


@dataclass
class ShellChannel:
    """
    adb shell transport shared by the shell tiers.

    `runner` has the subprocess.run signature and exists for tests.
    """
    adb_path: str = "adb"
    serial: Optional[str] = None
    timeout_seconds: float = 10.0
    runner: Optional[Callable[..., Any]] = field(default=None, repr=False)

    def argv(self, command: List[str], wrapper: Optional[str] = None) -> List[str]:
        """Full argv for a device command, optionally wrapped (`su`, `rish`)."""
        base = [self.adb_path]
        if self.serial:
            base += ["-s", self.serial]
        base.append("shell")

        quoted = [shlex.quote(part) for part in command]
        if wrapper:
            # Quoted once for the wrapper's shell and once for adb's
            return base + [wrapper, "-c", shlex.quote(" ".join(quoted))]
        return base + quoted

    def run(
        self,
        command: List[str],
        wrapper: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ) -> RawResult:
        """
        Run a device command.

        Raises:
            subprocess.TimeoutExpired: On timeout
            FileNotFoundError: If adb is not installed
        """
        argv = self.argv(command, wrapper)
        logger.debug(f"Running: {argv}")

        run = self.runner or subprocess.run
        completed = run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout_seconds or self.timeout_seconds,
        )

        stdout = (completed.stdout or "").strip()
        stderr = (completed.stderr or "").strip()

        if completed.returncode != 0:
            return RawResult.fail(stderr or stdout or f"exit code {completed.returncode}",
                                  code=completed.returncode)

        # `su -c` and `rish -c` report some failures on stdout with exit code 0
        if wrapper and "permission denied" in stdout.lower():
            return RawResult.fail(stdout, code=completed.returncode)

        return RawResult.ok(stdout)

    def ping(self, wrapper: Optional[str] = None) -> bool:
        """True when the device answers `echo test`."""
        try:
            result = self.run(["echo", "test"], wrapper=wrapper, timeout_seconds=5)
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Ping failed ({wrapper or 'adb'}): {e}")
            return False
        return result.success and result.output == "test"

    def has_root(self) -> bool:
        """True when `su -c id` reports uid 0."""
        try:
            result = self.run(["id"], wrapper="su", timeout_seconds=5)
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Root check failed: {e}")
            return False
        return result.success and "uid=0" in (result.output or "")


def encode_text(text: str, encoding: str = "plain") -> str:
    """
    Encode text for `input text`.

    plain: spaces become %s, the form every Android version accepts.
    escaped: the literal text, kept as one argument by shell quoting alone.

    Shell quoting is applied later by ShellChannel in both cases.
    """
    if encoding == "escaped":
        return text
    return text.replace(" ", "%s")


def build_shell_command(action: Action) -> Optional[List[str]]:
    """
    Translate an action to a device command.

    Returns None for actions performed locally (wait) and raises
    ValueError for kinds the shell cannot express.
    """
    p = action.parameters
    kind = action.kind

    if kind == ActionKind.TAP.value:
        return ["input", "tap", str(p["x"]), str(p["y"])]

    if kind == ActionKind.LONG_PRESS.value:
        x, y = str(p["x"]), str(p["y"])
        return ["input", "swipe", x, y, x, y, str(p.get("duration_ms", 1000))]

    if kind == ActionKind.SWIPE.value:
        return [
            "input", "swipe",
            str(p["start_x"]), str(p["start_y"]),
            str(p["end_x"]), str(p["end_y"]),
            str(p.get("duration_ms", 300)),
        ]

    if kind == ActionKind.TYPE_TEXT.value:
        return ["input", "text", encode_text(p["text"], p.get("encoding", "plain"))]

    if kind == ActionKind.KEY_EVENT.value:
        return ["input", "keyevent", str(p["key_code"])]

    if kind == ActionKind.NAVIGATE_BACK.value:
        return ["input", "keyevent", str(KEYCODE_BACK)]

    if kind == ActionKind.NAVIGATE_HOME.value:
        return ["input", "keyevent", str(KEYCODE_HOME)]

    if kind == ActionKind.LAUNCH.value:
        if p.get("activity"):
            return ["am", "start", "-n", f"{p['package']}/{p['activity']}"]
        return ["monkey", "-p", p["package"], "-c", "android.intent.category.LAUNCHER", "1"]

    if kind == ActionKind.OPEN_URL.value:
        return ["am", "start", "-a", "android.intent.action.VIEW", "-d", p["url"]]

    if kind == ActionKind.QUERY_CAPABILITY.value:
        prop = p.get("capability") or "ro.build.version.sdk"
        return ["getprop", prop]

    if kind == ActionKind.WAIT.value:
        return None

    raise ValueError(f"Invalid action for shell: {kind}")


def _shell_executor(channel: ShellChannel, wrapper: Optional[str]) -> Callable[[Action], RawResult]:
    def execute(action: Action) -> RawResult:
        command = build_shell_command(action)
        if command is None:
            duration_ms = action.parameters.get("duration_ms", 1000)
            sleep_ms(duration_ms, current_token())
            return RawResult.ok(f"Waited for {duration_ms}ms")

        timeout_ms = action.parameters.get("timeout_ms")
        result = channel.run(
            command,
            wrapper=wrapper,
            timeout_seconds=timeout_ms / 1000.0 if timeout_ms else None,
        )
        if result.success and not result.output:
            result.output = f"Executed {action.describe()}"
        return result

    return execute


def shizuku_adb_method(channel: ShellChannel, priority: int = 1000) -> ExecutionMethod:
    return ExecutionMethod(
        id="shizuku_adb",
        priority=priority,
        supported_actions=SHELL_ACTIONS,
        executor=_shell_executor(channel, wrapper=None),
        probe=channel.ping,
        description="Direct adb shell command execution",
        limitations={"shell_commands": "Limited to shell command availability"},
    )


def shizuku_method(channel: ShellChannel, priority: int = 900) -> ExecutionMethod:
    return ExecutionMethod(
        id="shizuku",
        priority=priority,
        supported_actions=SHIZUKU_ACTIONS,
        executor=_shell_executor(channel, wrapper="rish"),
        probe=lambda: channel.ping(wrapper="rish"),
        description="Shell execution through Shizuku's rish",
        limitations={"requires_shizuku": "Shizuku must be running and authorized"},
    )


def root_method(channel: ShellChannel, priority: int = 800) -> ExecutionMethod:
    return ExecutionMethod(
        id="root",
        priority=priority,
        supported_actions=SHELL_ACTIONS,
        executor=_shell_executor(channel, wrapper="su"),
        probe=channel.has_root,
        description="Root shell command execution",
        limitations={"su_binary": "Requires working su binary"},
    )


def accessibility_method(bridge: Any, priority: int = 700) -> ExecutionMethod:
    """
    Gesture tier bound to an accessibility bridge.

    The bridge is duck-typed: tap(x, y), long_press(x, y, duration_ms),
    swipe(sx, sy, ex, ey, duration_ms), type_text(text), press_back(),
    press_home() and optionally is_connected(). Calls returning False
    count as failures.
    """
    def execute(action: Action) -> RawResult:
        p = action.parameters
        kind = action.kind

        if kind == ActionKind.TAP.value:
            outcome = bridge.tap(p["x"], p["y"])
        elif kind == ActionKind.LONG_PRESS.value:
            outcome = bridge.long_press(p["x"], p["y"], p.get("duration_ms", 1000))
        elif kind == ActionKind.SWIPE.value:
            outcome = bridge.swipe(p["start_x"], p["start_y"], p["end_x"], p["end_y"],
                                   p.get("duration_ms", 300))
        elif kind == ActionKind.TYPE_TEXT.value:
            outcome = bridge.type_text(p["text"])
        elif kind == ActionKind.NAVIGATE_BACK.value:
            outcome = bridge.press_back()
        elif kind == ActionKind.NAVIGATE_HOME.value:
            outcome = bridge.press_home()
        elif kind == ActionKind.WAIT.value:
            duration_ms = p.get("duration_ms", 1000)
            sleep_ms(duration_ms, current_token())
            outcome = f"Waited for {duration_ms}ms"
        else:
            raise ValueError(f"Invalid action for accessibility: {kind}")

        if outcome is False:
            return RawResult.fail(f"Accessibility gesture not dispatched: {action.describe()}")
        if isinstance(outcome, RawResult):
            return outcome
        return RawResult.ok(outcome if isinstance(outcome, str) else f"Executed {action.describe()}")

    def probe() -> bool:
        check = getattr(bridge, "is_connected", None)
        return bool(check()) if callable(check) else True

    return ExecutionMethod(
        id="accessibility",
        priority=priority,
        supported_actions=ACCESSIBILITY_ACTIONS,
        executor=execute,
        probe=probe,
        description="Gestures through the accessibility service",
        limitations={"gestures_only": "No package management or intents"},
    )


def build_shell_tiers(channel: ShellChannel, config: Optional[Dict[str, Any]] = None) -> List[ExecutionMethod]:
    """
    Build the enabled shell tiers from the `methods:` config section.

    Each tier may be disabled with `enabled: false` or re-prioritised.
    """
    config = config or {}
    factories = {
        "shizuku_adb": shizuku_adb_method,
        "shizuku": shizuku_method,
        "root": root_method,
    }

    methods = []
    for tier_id, factory in factories.items():
        tier_config = config.get(tier_id) or {}
        if not tier_config.get("enabled", True):
            logger.info(f"Tier {tier_id} disabled by config")
            continue
        if "priority" in tier_config:
            methods.append(factory(channel, priority=int(tier_config["priority"])))
        else:
            methods.append(factory(channel))
    return methods
