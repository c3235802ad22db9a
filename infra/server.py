#!/usr/bin/env python3
"""
DroidPilot Service Bus Server
-----------------------------
Runs the FastAPI service bus with an orchestrator built from config.yaml.

Usage:
    python -m infra.server --port 8765
    python -m infra.server --dry-run --script scripts/demo_oracle.yaml
"""

import argparse
import sys
from pathlib import Path

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn
from rich.console import Console

from core.bootstrap import build_orchestrator
from core.config import load_config
from infra.logging import configure_logging
from infra.service_bus import ServiceBus
from oracle.interfaces import OracleError

console = Console()


def main():
    parser = argparse.ArgumentParser(description="DroidPilot Service Bus Server")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--dry-run", action="store_true", help="Log actions instead of touching a device")
    parser.add_argument("--script", default=None, help="Use a scripted oracle from this YAML file")
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args()

    config = load_config(args.config)
    if args.dry_run:
        config.methods.dry_run = True
    if args.script:
        config.oracle.provider = "scripted"
        config.oracle.script = args.script

    host = args.host or config.server.host
    port = args.port or config.server.port
    log_level = args.log_level or config.logging.level

    configure_logging(
        level=log_level,
        log_dir=config.logging.log_dir,
        console=config.logging.console,
        file=config.logging.file,
    )

    console.print("[dim]Creating orchestrator...[/dim]")
    try:
        orchestrator = build_orchestrator(config)
    except (ValueError, OSError, OracleError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)

    bus = ServiceBus(
        orchestrator,
        max_workers=config.server.workers,
        session_ttl_seconds=config.server.session_ttl_seconds,
    )
    app = bus.create_app()

    console.print(f"\n[bold green]DroidPilot Service Bus[/bold green]")
    console.print(f"Running on http://{host}:{port}")
    console.print(f"API docs: http://{host}:{port}/docs")
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=log_level.lower()
    )


if __name__ == "__main__":
    main()
