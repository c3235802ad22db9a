"""
Configuration
-------------
Loads config.yaml into typed sections.

A missing file yields the defaults below with a warning; unknown keys
inside a known section are ignored.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import yaml


@dataclass
class OrchestratorSettings:
    """The `orchestrator:` section."""
    max_iterations: int = 10
    stuck_threshold: int = 3
    action_settle_ms: int = 500
    event_queue_size: int = 256
    max_history_turns: int = 200


@dataclass
class RouterSettings:
    """The `router:` section."""
    availability_ttl_seconds: float = 5.0


@dataclass
class MethodsSettings:
    """The `methods:` section."""
    adb_path: str = "adb"
    serial: Optional[str] = None
    timeout_seconds: float = 10.0
    dry_run: bool = False
    tiers: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class OracleSettings:
    """The `oracle:` section."""
    provider: str = "scripted"          # scripted | claude
    script: Optional[str] = None
    model: str = "claude-sonnet-4-20250514"
    api_key_env: str = "ANTHROPIC_API_KEY"
    max_tokens: int = 1024
    timeout_seconds: float = 60.0


@dataclass
class LoggingSettings:
    """The `logging:` section."""
    level: str = "INFO"
    log_dir: str = "logs"
    console: bool = True
    file: bool = False


@dataclass
class ServerSettings:
    """The `server:` section."""
    host: str = "127.0.0.1"
    port: int = 8765
    workers: int = 4
    session_ttl_seconds: float = 3600.0


@dataclass
class AppConfig:
    """All configuration sections."""
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    router: RouterSettings = field(default_factory=RouterSettings)
    retry_policy: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    methods: MethodsSettings = field(default_factory=MethodsSettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    source: Optional[str] = None


def _section(cls, data: Optional[Dict[str, Any]]):
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in (data or {}).items() if k in known}
    return cls(**values)


def config_from_dict(data: Optional[Dict[str, Any]]) -> AppConfig:
    """Build an AppConfig from an already-parsed mapping."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping")

    methods = dict(data.get("methods") or {})
    tiers = {
        name: methods.pop(name)
        for name in ("shizuku_adb", "shizuku", "root", "accessibility")
        if isinstance(methods.get(name), dict)
    }

    methods_settings = _section(MethodsSettings, methods)
    methods_settings.tiers = tiers

    config = AppConfig(
        orchestrator=_section(OrchestratorSettings, data.get("orchestrator")),
        router=_section(RouterSettings, data.get("router")),
        retry_policy=dict(data.get("retry_policy") or {}),
        methods=methods_settings,
        oracle=_section(OracleSettings, data.get("oracle")),
        logging=_section(LoggingSettings, data.get("logging")),
        server=_section(ServerSettings, data.get("server")),
    )

    if config.orchestrator.max_iterations < 1:
        raise ValueError("orchestrator.max_iterations must be >= 1")
    if config.orchestrator.stuck_threshold < 1:
        raise ValueError("orchestrator.stuck_threshold must be >= 1")

    return config


def load_config(config_path: Union[str, Path] = "config.yaml") -> AppConfig:
    """Load configuration from a YAML file."""
    logger = logging.getLogger("droidpilot.config")
    path = Path(config_path)

    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return AppConfig()

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    config = config_from_dict(data)
    config.source = str(path)
    logger.info(f"Loaded configuration from {path}")
    return config
