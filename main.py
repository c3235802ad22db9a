#!/usr/bin/env python3
"""
DroidPilot - Goal-Driven Android Automation
===========================================

Main entry point: runs one goal to completion in the terminal.

Usage:
    python main.py "open the settings app"                 # Oracle from config.yaml
    python main.py "open settings" --dry-run --script scripts/demo_oracle.yaml
    python main.py "turn on wifi" --oracle claude          # Claude (ANTHROPIC_API_KEY)
    python main.py --methods                               # Show execution tiers
    python main.py --help                                  # Show help

When the session needs clarification you are prompted for an answer;
an empty answer (or Ctrl+C) cancels the session.
"""

import argparse
import sys
from pathlib import Path

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent))

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from core import StateKind, load_config
from core.bootstrap import build_orchestrator
from core.session import EventKind, WorkflowEvent
from infra.logging import configure_logging
from oracle.interfaces import OracleError


# Setup rich console
console = Console()


def print_banner(goal: str, oracle: str, dry_run: bool) -> None:
    """Print the DroidPilot banner."""
    banner = Text()
    banner.append("DroidPilot", style="bold cyan")
    banner.append(" - Goal-Driven Android Automation\n\n", style="dim")
    banner.append("Goal: ", style="dim")
    banner.append(f"{goal}\n", style="bold")
    banner.append(f"Oracle: {oracle}", style="green")
    if dry_run:
        banner.append(" | DRY RUN", style="yellow")

    console.print(Panel(banner, title="Session", border_style="blue"))


def print_methods(orchestrator) -> None:
    """Print execution methods in dispatch order."""
    table = Table(title="Execution Methods")
    table.add_column("Priority", justify="right")
    table.add_column("Method")
    table.add_column("Available")
    table.add_column("Actions", style="dim")

    for descriptor in orchestrator.router.describe_methods():
        info = descriptor.to_dict()
        table.add_row(
            str(info["priority"]),
            info["id"],
            "[green]✓[/green]" if info["available"] else "[red]✗[/red]",
            ", ".join(info["supported_actions"]),
        )

    console.print(table)


def on_event(event: WorkflowEvent) -> None:
    """Callback for session feedback events."""
    if event.kind == EventKind.STEP:
        console.print(f"[dim][{event.iteration}] {event.description}[/dim]")
    elif event.kind == EventKind.ACTION:
        style = "red" if event.description.startswith("Action failed") else "green"
        console.print(f"[{style}]  → {event.description}[/{style}]")


def print_final_state(session) -> None:
    """Print the state the session stopped in."""
    state = session.state

    if state.kind == StateKind.COMPLETED:
        console.print(Panel(state.result or "Done.", title="Completed", border_style="green"))
    elif state.kind == StateKind.ERROR:
        console.print(Panel(state.message, title="Error", border_style="red"))
    elif state.kind == StateKind.IDLE:
        console.print("[yellow]Session cancelled.[/yellow]")

    console.print(f"[dim]Iterations: {session.iteration} | History turns: {len(session.history)}[/dim]")


def run_session(orchestrator, goal: str) -> int:
    """Run one goal, prompting for clarification until a stopping state."""
    session = orchestrator.create_session()
    session.events.add_listener(on_event)

    try:
        state = session.start(goal)

        while state.kind == StateKind.NEEDS_CLARIFICATION:
            console.print(f"\n[bold yellow]Question:[/bold yellow] {state.question}")
            answer = Prompt.ask("[bold cyan]Your answer[/bold cyan] (empty to cancel)", default="")
            if not answer.strip():
                session.cancel()
                break
            state = session.resume(answer)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        session.cancel()

    print_final_state(session)
    return 0 if session.state.kind == StateKind.COMPLETED else 1


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="DroidPilot - Goal-Driven Android Automation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py "open the settings app"
  python main.py "open settings" --dry-run --script scripts/demo_oracle.yaml
  python main.py "search for weather" --oracle claude
        """
    )

    parser.add_argument("goal", nargs="?", help="What you want done on the device")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Log actions instead of touching a device")
    parser.add_argument("--script", default=None, help="Use a scripted oracle from this YAML file")
    parser.add_argument("--oracle", choices=["scripted", "claude"], default=None, help="Oracle provider")
    parser.add_argument("--methods", action="store_true", help="List execution methods and exit")
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args()

    config = load_config(args.config)
    if args.dry_run:
        config.methods.dry_run = True
    if args.script:
        config.oracle.provider = "scripted"
        config.oracle.script = args.script
    if args.oracle:
        config.oracle.provider = args.oracle

    configure_logging(
        level=args.log_level or config.logging.level,
        log_dir=config.logging.log_dir,
        console=config.logging.console,
        file=config.logging.file,
        rich_console=console,
    )

    try:
        orchestrator = build_orchestrator(config)
    except (ValueError, OSError, OracleError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if args.methods:
        print_methods(orchestrator)
        return

    if not args.goal:
        parser.error("a goal is required unless --methods is given")

    print_banner(args.goal, config.oracle.provider, config.methods.dry_run)
    sys.exit(run_session(orchestrator, args.goal))


if __name__ == "__main__":
    main()
