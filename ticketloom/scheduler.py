"""
ticketloom Wave Scheduler

Conflict-free parallel execution. A batch of tickets is:
  1. Partitioned into waves: no two tickets in a wave share a file.
  2. Sized: parallelism adapts to how many heavy tickets the batch holds.
  3. Run wave by wave; tickets inside a wave run concurrently, each in
     its own worktree, all sharing one WorkspaceManager (and its git mutex).

Waves are strictly sequential: wave N+1 starts only once wave N settled.
"""

from __future__ import annotations

import concurrent.futures
import threading
from typing import Callable, Sequence

from loguru import logger
from pydantic import BaseModel, Field
from rich.console import Console
from rich.table import Table

from ticketloom.config_loader import LoomConfig
from ticketloom.runner import FailureReason, TicketResult, TicketRunner, status_for_result
from ticketloom.scope import normalize_path
from ticketloom.tickets import Ticket, TicketStatus

console = Console()

DEFAULT_MIN_PARALLEL = 2
DEFAULT_MAX_PARALLEL = 5


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

def adaptive_parallelism(
    tickets: Sequence[Ticket],
    min_parallel: int = DEFAULT_MIN_PARALLEL,
    max_parallel: int = DEFAULT_MAX_PARALLEL,
) -> int:
    """
    More light tickets → more parallelism.

    No heavy tickets runs at ``max_parallel``, no light tickets at
    ``min_parallel``; mixed batches interpolate on the light ratio
    (rounding half up).
    """
    heavy = sum(1 for t in tickets if t.complexity.heavy)
    light = len(tickets) - heavy
    if heavy == 0:
        return max_parallel
    if light == 0:
        return min_parallel
    ratio = light / len(tickets)
    value = int(min_parallel + ratio * (max_parallel - min_parallel) + 0.5)
    return max(min_parallel, min(max_parallel, value))


def partition_into_waves(tickets: Sequence[Ticket]) -> list[list[Ticket]]:
    """Greedy first-fit colouring of the file-conflict graph, input order kept."""
    waves: list[list[Ticket]] = []
    wave_files: list[set[str]] = []

    for ticket in tickets:
        files = {normalize_path(f) for f in ticket.files}
        for idx, occupied in enumerate(wave_files):
            if occupied.isdisjoint(files):
                waves[idx].append(ticket)
                occupied.update(files)
                break
        else:
            waves.append([ticket])
            wave_files.append(set(files))

    return waves


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class BatchResult(BaseModel):
    parallelism: int
    waves: list[list[str]] = Field(default_factory=list)
    results: list[TicketResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


class WaveScheduler:
    """Drives a batch of tickets through TicketRunners, wave by wave."""

    def __init__(
        self,
        runner_factory: Callable[[], TicketRunner],
        config: LoomConfig | None = None,
        quiet: bool = False,
    ):
        self.runner_factory = runner_factory
        self.config = config or LoomConfig()
        self.quiet = quiet

    def plan(self, tickets: Sequence[Ticket]) -> tuple[list[list[Ticket]], int]:
        sched = self.config.scheduler
        return (
            partition_into_waves(tickets),
            adaptive_parallelism(tickets, sched.min_parallel, sched.max_parallel),
        )

    def run(self, tickets: Sequence[Ticket], cancel_event: threading.Event | None = None) -> BatchResult:
        cancel_event = cancel_event or threading.Event()
        waves, parallel = self.plan(tickets)
        batch = BatchResult(parallelism=parallel, waves=[[t.id for t in w] for w in waves])

        if not self.quiet:
            _print_batch_header(len(tickets), len(waves), parallel)

        for number, wave in enumerate(waves, start=1):
            if cancel_event.is_set():
                logger.warning(f"[WAVES] Cancelled before wave {number}")
                batch.results.extend(_cancelled(t) for t in wave)
                continue

            logger.info(f"[WAVES] Wave {number}/{len(waves)}: {', '.join(t.id for t in wave)}")
            batch.results.extend(self._run_wave(wave, parallel, cancel_event))

        if not self.quiet:
            _print_batch_summary(batch)
        return batch

    def _run_wave(self, wave: list[Ticket], parallel: int, cancel_event: threading.Event) -> list[TicketResult]:
        results: list[TicketResult] = []

        with concurrent.futures.ThreadPoolExecutor(max_workers=min(parallel, len(wave))) as executor:
            future_to_ticket = {}
            for ticket in wave:
                ticket.status = TicketStatus.IN_PROGRESS
                future_to_ticket[executor.submit(self._run_single, ticket, cancel_event)] = ticket

            for future in concurrent.futures.as_completed(future_to_ticket):
                ticket = future_to_ticket[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"[WAVES] Ticket crashed: {ticket.id} — {e}")
                    result = TicketResult(
                        ticket_id=ticket.id,
                        failure_reason=FailureReason.AGENT_ERROR,
                        error=str(e),
                    )
                ticket.status = status_for_result(result)
                results.append(result)
                if not self.quiet:
                    _log_ticket_completion(result)

        return results

    def _run_single(self, ticket: Ticket, cancel_event: threading.Event) -> TicketResult:
        return self.runner_factory().run(ticket, cancel_event)


def _cancelled(ticket: Ticket) -> TicketResult:
    ticket.status = TicketStatus.FAILED
    return TicketResult(ticket_id=ticket.id, failure_reason=FailureReason.CANCELLED, error="Cancelled before start")


# --- Helpers ---

def _print_batch_header(count: int, waves: int, parallel: int) -> None:
    console.print(f"\n[bold]⚡ ticketloom batch — {count} tickets, {waves} waves, {parallel} workers[/]")
    console.print("[dim]Tickets in a wave touch disjoint files; each runs in its own worktree.[/]\n")


def _log_ticket_completion(result: TicketResult) -> None:
    color = "green" if result.success else "red"
    label = "success" if result.success else (result.failure_reason.value if result.failure_reason else "error")
    console.print(f"  [{color}]{result.ticket_id}: {label}[/]")


def print_wave_plan(waves: list[list[Ticket]], parallel: int) -> None:
    table = Table(title=f"Wave Plan ({parallel} workers)", border_style="cyan")
    table.add_column("Wave")
    table.add_column("Ticket")
    table.add_column("Complexity")
    table.add_column("Files")

    for number, wave in enumerate(waves, start=1):
        for ticket in wave:
            files = ", ".join(ticket.files[:3]) + (" …" if len(ticket.files) > 3 else "")
            table.add_row(str(number), ticket.id, ticket.complexity.value, files or "—")

    console.print(table)


def _print_batch_summary(batch: BatchResult) -> None:
    """Consolidated report of the batch."""
    table = Table(title="Batch Results", border_style="bright_green")
    table.add_column("Ticket")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Duration")

    for r in batch.results:
        status = "success" if r.success else (r.failure_reason.value if r.failure_reason else "error")
        color = "green" if r.success else ("yellow" if r.failure_reason == FailureReason.SPINDLE_BLOCK else "red")
        table.add_row(r.ticket_id, f"[{color}]{status}[/]", r.branch_name or "—", f"{r.duration_ms / 1000:.1f}s")

    console.print(table)
    console.print(f"\n[bold]{batch.succeeded}/{len(batch.results)} succeeded[/]")
