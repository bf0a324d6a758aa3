"""
ticketloom CLI — The Interface

  ticketloom run --repo <path> --ticket <file>     (one ticket)
  ticketloom batch --repo <path> [--tickets-dir]   (conflict-free waves)

Plus utilities:
  - ticketloom waves        (preview the wave plan without running)
  - ticketloom status       (check config + tools)
  - ticketloom init <path>  (bootstrap .ticketloom in a repo)
"""

from __future__ import annotations

import shutil
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table

from ticketloom.audit_logger import AuditLogger
from ticketloom.backends import CommandBackend
from ticketloom.config_loader import LoomConfig, QAConfigError, load_config
from ticketloom.event_bus import EventBus, LoomEvent
from ticketloom.identity import BANNER, __codename__, __tagline__, __version__
from ticketloom.runner import TicketRunner, status_for_result
from ticketloom.scheduler import (
    WaveScheduler,
    adaptive_parallelism,
    partition_into_waves,
    print_wave_plan,
)
from ticketloom.tickets import Ticket, load_tickets
from ticketloom.workspace import WorkspaceManager

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".ticketloom" / ".env")

app = typer.Typer(
    name="ticketloom",
    help=f"{__codename__} — {__tagline__}\nConcurrent, scope-checked ticket execution.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
    ticket_file: Path = typer.Option(..., "--ticket", "-f", help="Path to ticket YAML"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Backend timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run one ticket through the pipeline."""
    _print_banner()
    _configure_logging(verbose)

    repo = _resolve_repo(repo)
    config = _load(repo, timeout)

    if not ticket_file.exists():
        console.print(f"[red]Ticket file not found: {ticket_file}[/]")
        raise typer.Exit(1)
    ticket = Ticket.from_yaml(ticket_file)

    event_bus = _event_bus(repo, config, verbose)
    runner = TicketRunner(repo, CommandBackend(config.execution.command), config=config, event_bus=event_bus)

    with _cancellation() as cancel:
        result = runner.run(ticket, cancel)
    ticket.status = status_for_result(result)

    color = "green" if result.success else ("yellow" if ticket.status.value == "blocked" else "red")
    console.print(f"\n[bold {color}]Status: {ticket.status.value}[/]")
    if result.artifacts.get("run"):
        console.print(f"[dim]Run summary: {result.artifacts['run']}[/]")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def batch(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
    tickets_dir: Optional[Path] = typer.Option(None, "--tickets-dir", "-d", help="Directory of ticket YAMLs"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Backend timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run a directory of tickets in conflict-free parallel waves."""
    _print_banner()
    _configure_logging(verbose)

    repo = _resolve_repo(repo)
    config = _load(repo, timeout)
    tickets = _load_batch(repo, tickets_dir)

    event_bus = _event_bus(repo, config, verbose)
    manager = WorkspaceManager(repo, config)
    backend = CommandBackend(config.execution.command)

    def factory() -> TicketRunner:
        return TicketRunner(
            repo, backend,
            config=config,
            workspace_manager=manager,
            event_bus=event_bus,
            quiet=True,
        )

    scheduler = WaveScheduler(factory, config)
    with _cancellation() as cancel:
        result = scheduler.run(tickets, cancel)
    if result.failed:
        raise typer.Exit(1)


@app.command()
def waves(
    repo: Path = typer.Option(..., "--repo", "-r", help="Path to the target repository"),
    tickets_dir: Optional[Path] = typer.Option(None, "--tickets-dir", "-d", help="Directory of ticket YAMLs"),
):
    """Preview how a batch would be split into waves."""
    repo = _resolve_repo(repo)
    config = _load(repo, None)
    tickets = _load_batch(repo, tickets_dir)

    planned = partition_into_waves(tickets)
    parallel = adaptive_parallelism(tickets, config.scheduler.min_parallel, config.scheduler.max_parallel)
    print_wave_plan(planned, parallel)
    console.print(f"\n[bold]{len(tickets)} tickets → {len(planned)} waves, {parallel} workers[/]")


@app.command()
def status(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r"),
):
    """Check ticketloom configuration and readiness."""
    _print_banner()

    config = _load(repo.resolve(), None) if repo else load_config()
    if repo:
        console.print("[bold]Execution:[/]")
        console.print(f"  Backend:  {' '.join(config.execution.command)}")
        console.print(f"  Timeout:  {config.execution.timeout_s:.0f}s (grace {config.execution.kill_grace_s}s)")

        console.print("\n[bold]Spindle:[/]")
        sp = config.spindle
        console.print(f"  Enabled:          {sp.enabled}")
        console.print(f"  Token budget:     {sp.token_budget_warning:,} warn / {sp.token_budget_abort:,} abort")
        console.print(f"  Stall iterations: {sp.max_stall_iterations}")
        console.print(f"  Stall minutes:    {sp.max_stall_minutes}")

        qa_table = Table(title="QA Commands", border_style="cyan")
        qa_table.add_column("Name")
        qa_table.add_column("Command")
        qa_table.add_column("Timeout")
        for c in config.qa.commands:
            qa_table.add_row(c.name, c.cmd, f"{c.timeout_s:.0f}s")
        console.print(qa_table)

    tools_table = Table(title="System Tools", border_style="cyan")
    tools_table.add_column("Tool")
    tools_table.add_column("Status")

    backend_cmd = config.execution.command[0] if config.execution.command else "—"
    for tool in ["git", "sh", backend_cmd]:
        found = shutil.which(tool)
        s = f"[green]✓ {found}[/]" if found else "[dim]✗ Not found[/]"
        tools_table.add_row(tool, s)

    console.print(tools_table)


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to repository"),
):
    """Initialize .ticketloom directory in a repository."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    tl_dir = repo / ".ticketloom"
    tl_dir.mkdir(exist_ok=True)
    (tl_dir / "tickets").mkdir(exist_ok=True)
    (tl_dir / "logs").mkdir(exist_ok=True)
    (tl_dir / "worktrees").mkdir(exist_ok=True)

    config_path = tl_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text("""# ticketloom repo-level config overrides
# These merge with the built-in defaults.

# Agent command (reads the prompt on stdin, runs in the worktree):
# execution:
#   command: ["claude", "-p"]
#   timeout_s: 900

# QA commands, run in order inside each worktree:
# qa:
#   commands:
#     - name: unit-tests
#       cmd: "python -m pytest -q"
#       timeout_s: 600

# Loop detection:
# spindle:
#   max_stall_iterations: 5
#   token_budget_abort: 140000
""")

    ticket_path = tl_dir / "tickets" / "example.yaml"
    if not ticket_path.exists():
        ticket_path.write_text("""id: example-001
title: "Add a --verbose flag to the CLI"
description: "Expose a --verbose flag that enables debug logging."
category: feature
complexity: simple
allowed_paths:
  - "src/cli.py"
  - "tests/test_cli.py"
forbidden_paths:
  - "src/core/"
""")

    gitignore = repo / ".gitignore"
    ignore_entries = [".ticketloom/worktrees/", ".ticketloom/logs/", ".ticketloom/artifacts/"]
    if gitignore.exists():
        content = gitignore.read_text()
        additions = [e for e in ignore_entries if e not in content]
        if additions:
            with open(gitignore, "a") as f:
                f.write("\n# ticketloom\n")
                for e in additions:
                    f.write(f"{e}\n")
    else:
        gitignore.write_text("# ticketloom\n" + "\n".join(ignore_entries) + "\n")

    console.print(f"[green]✅ Initialized ticketloom in {tl_dir}[/]")
    console.print(f"  Config:  {config_path}")
    console.print(f"  Tickets: {tl_dir / 'tickets'}")
    console.print(f"  Example: {ticket_path}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _resolve_repo(repo: Path) -> Path:
    repo = repo.resolve()
    if not repo.exists():
        console.print(f"[red]Repository not found: {repo}[/]")
        raise typer.Exit(1)
    return repo


def _load(repo: Path, timeout: float | None) -> LoomConfig:
    try:
        config = load_config(repo)
    except QAConfigError as e:
        console.print(f"[red]Invalid QA config: {e}[/]")
        raise typer.Exit(1)
    if timeout:
        config.execution.timeout_s = timeout
    return config


def _load_batch(repo: Path, tickets_dir: Path | None) -> list[Ticket]:
    td = tickets_dir or (repo / ".ticketloom" / "tickets")
    if not td.exists():
        console.print(f"[red]Tickets directory not found: {td}[/]")
        raise typer.Exit(1)

    tickets = load_tickets(td)
    if not tickets:
        console.print(f"[red]No ticket files found in {td}[/]")
        raise typer.Exit(1)
    return tickets


def _event_bus(repo: Path, config: LoomConfig, verbose: bool) -> EventBus:
    event_bus = EventBus()
    AuditLogger(str(repo / config.workspace.log_dir / "events.jsonl"), event_bus)

    def show(event: LoomEvent) -> None:
        if event.event_type == "step":
            console.print(
                f"  [dim]{event.ticket_id}[/] {event.payload['step']} → {event.payload['status']}",
                highlight=False,
            )
        elif event.event_type == "progress" and verbose:
            console.print(f"  [dim]{event.ticket_id}: {event.payload['message']}[/]", highlight=False)

    event_bus.subscribe(show)
    return event_bus


@contextmanager
def _cancellation() -> Iterator[threading.Event]:
    """First Ctrl-C cancels in-flight tickets at the next stage boundary."""
    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        console.print("\n[yellow]⚡ Cancelling… (Ctrl-C again to abort immediately)[/]")
        cancel.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
