"""
statewright CLI
===============

Drive persisted workflow instances from the shell.

Commands:
    statewright workflows                          - List configured workflows
    statewright status <workflow> <key>            - Show state and context
    statewright send <workflow> <key> <event>      - Fire an event
    statewright check <workflow> <key> <event>     - Dry-run an event
    statewright history <workflow> <key>           - Show transition history
    statewright rollback <workflow> <key> <state>  - Roll back to a past state
    statewright reset <workflow> <key>             - Back to the initial state
    statewright journal                            - Show the transition journal
"""

import asyncio
import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import EngineSettings, load_capabilities, load_config, load_workflows
from .engine.machine import StateMachine
from .errors import StatewrightError
from .state.events import TransitionJournal
from .state.persistence import ROLLBACK_EVENT, SnapshotStore
from .state.storage import create_storage


console = Console()


class Runtime:
    """Config, storage and compiled workflows shared by all commands"""

    def __init__(self, config: dict, capability_modules: tuple = ()):
        self.config = config
        self.settings = EngineSettings.from_config(config)

        configured = config.get("capabilities") or []
        if isinstance(configured, str):
            configured = [configured]
        modules = [*configured, *capability_modules]
        self.registry = load_capabilities(modules)
        self.workflows = load_workflows(config, self.registry)
        self.store = SnapshotStore(create_storage(config))

        state_dir = Path(config.get("paths", {}).get("state_dir", "./state"))
        self.journal = TransitionJournal(state_dir / "journal.jsonl")

    def open(self, workflow: str, key: str) -> StateMachine:
        if workflow not in self.workflows:
            raise click.ClickException(f"Unknown workflow: {workflow}")

        machine = asyncio.run(StateMachine.create(
            self.workflows[workflow],
            persistence_key=f"{workflow}:{key}",
            store=self.store,
            history_limit=self.settings.history_limit,
            serialize=self.settings.serialize_transitions,
        ))
        self.journal.attach(machine)
        return machine


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="statewright")
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(dir_okay=False),
    default="statewright.yaml",
    help="Path to the YAML config (default: statewright.yaml)",
)
@click.option(
    "--capabilities", "-C", "capability_modules",
    multiple=True,
    help="Module defining register_capabilities(registry); repeatable",
)
@click.option("--verbose", "-v", is_flag=True, help="Log transitions at debug level")
@click.pass_context
def main(ctx: click.Context, config_path: str, capability_modules: tuple, verbose: bool):
    """statewright - workflow state machines"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    try:
        ctx.obj = Runtime(load_config(config_path), capability_modules)
    except StatewrightError as e:
        _fail(f"Invalid configuration: {e}")


@main.command()
@click.pass_obj
def workflows(runtime: Runtime):
    """List configured workflows."""
    if not runtime.workflows:
        console.print("[dim]No workflows configured[/dim]")
        return

    table = Table(title="Workflows")
    table.add_column("Name")
    table.add_column("Initial")
    table.add_column("States")
    table.add_column("Transitions")

    for name, machine_config in runtime.workflows.items():
        table.add_row(
            name,
            machine_config.initial,
            ", ".join(machine_config.states),
            str(len(machine_config.transitions)),
        )

    console.print(table)


@main.command()
@click.argument("workflow")
@click.argument("key")
@click.pass_obj
def status(runtime: Runtime, workflow: str, key: str):
    """Show the current state of an instance."""
    machine = runtime.open(workflow, key)

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Instance", f"{workflow}:{key}")
    table.add_row("State", f"[bold]{machine.get_state()}[/bold]")
    table.add_row("Events", ", ".join(machine.available_events()) or "-")
    table.add_row("Context", json.dumps(machine.get_context(), default=str))
    table.add_row("History", f"{len(machine.get_history())} entries")

    console.print(table)


@main.command()
@click.argument("workflow")
@click.argument("key")
@click.argument("event")
@click.option("--payload", "-p", default=None, help="JSON payload passed to guards and actions")
@click.pass_obj
def send(runtime: Runtime, workflow: str, key: str, event: str, payload: str):
    """Fire EVENT on an instance."""
    try:
        data = json.loads(payload) if payload else None
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON payload: {e}")

    machine = runtime.open(workflow, key)
    before = machine.get_state()

    if asyncio.run(machine.send(event, data)):
        console.print(f"[green]✓ {before} → {machine.get_state()}[/green]")
    else:
        _fail(f"Event {event} not accepted in state {before}")


@main.command()
@click.argument("workflow")
@click.argument("key")
@click.argument("event")
@click.pass_obj
def check(runtime: Runtime, workflow: str, key: str, event: str):
    """Report whether EVENT would be accepted."""
    machine = runtime.open(workflow, key)
    if asyncio.run(machine.can_transition(event)):
        console.print(f"[green]{event} is allowed in state {machine.get_state()}[/green]")
    else:
        console.print(f"[yellow]{event} is not allowed in state {machine.get_state()}[/yellow]")


@main.command()
@click.argument("workflow")
@click.argument("key")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of entries to show")
@click.pass_obj
def history(runtime: Runtime, workflow: str, key: str, limit: int):
    """Show recent transitions of an instance."""
    machine = runtime.open(workflow, key)
    entries = machine.get_history()[-limit:] if limit > 0 else []

    if not entries:
        console.print("[dim]No history[/dim]")
        return

    table = Table(title=f"{workflow}:{key}")
    table.add_column("Timestamp", style="dim")
    table.add_column("From")
    table.add_column("Event")
    table.add_column("To")

    for entry in entries:
        event = f"[yellow]{entry.event}[/yellow]" if entry.event == ROLLBACK_EVENT else entry.event
        table.add_row(entry.timestamp[:19], entry.from_state, event, entry.to_state)

    console.print(table)


@main.command()
@click.argument("workflow")
@click.argument("key")
@click.argument("target")
@click.pass_obj
def rollback(runtime: Runtime, workflow: str, key: str, target: str):
    """Roll an instance back to TARGET."""
    machine = runtime.open(workflow, key)
    try:
        machine.rollback(target)
    except StatewrightError as e:
        _fail(str(e))
    console.print(f"[green]Rolled back to {target}[/green]")


@main.command()
@click.argument("workflow")
@click.argument("key")
@click.confirmation_option(prompt="Discard context and history?")
@click.pass_obj
def reset(runtime: Runtime, workflow: str, key: str):
    """Return an instance to its initial state."""
    machine = runtime.open(workflow, key)
    machine.reset()
    console.print(f"[green]Reset to {machine.get_state()}[/green]")


@main.command()
@click.option("--machine", "-m", "machine_id", default=None, help="Filter by instance (workflow:key)")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of records to show")
@click.pass_obj
def journal(runtime: Runtime, machine_id: str, limit: int):
    """Show the transition journal."""
    records = runtime.journal.find(machine_id=machine_id)[-limit:] if limit > 0 else []

    if not records:
        console.print("[dim]Journal is empty[/dim]")
        return

    table = Table(title="Journal")
    table.add_column("Timestamp", style="dim")
    table.add_column("Instance")
    table.add_column("From")
    table.add_column("Event")
    table.add_column("To")

    for record in records:
        table.add_row(
            record.timestamp[:19],
            record.machine_id,
            record.from_state,
            record.event,
            record.to_state,
        )

    console.print(table)


if __name__ == "__main__":
    main()
