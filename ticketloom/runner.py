"""
ticketloom TicketRunner — the per-ticket pipeline.

It is NOT smart. It is deterministic.

Pipeline: workspace → agent → qa → (qa-retry) → cleanup

Responsibilities:
  - Create the isolated worktree and capture baselines
  - Render the prompt and drive the execution backend
  - Feed the Spindle loop detector
  - Enforce ticket scope against the baseline
  - Run QA, with one scope-expanded test-fix retry
  - Record every stage on the step ledger
  - Clean up (or deliberately preserve) the workspace

Nothing raises past ``run``: every failure becomes a TicketResult.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from rich.console import Console
from rich.panel import Panel

from ticketloom.artifacts import ArtifactError, ArtifactType, write_json_artifact
from ticketloom.backends import BackendRequest, BackendResult, ExecutionBackend
from ticketloom.config_loader import LoomConfig, QACommand, load_config
from ticketloom.event_bus import EventBus, ProgressChannel
from ticketloom.event_bus import bus as default_bus
from ticketloom.prompt import build_test_fix_prompt, build_ticket_prompt
from ticketloom.qa import QACommandResult, QAStatus, run_qa
from ticketloom.qa_retry import extract_test_files, is_test_failure
from ticketloom.scope import (
    ScopeViolation,
    analyze_violations_for_expansion,
    check_scope_violations,
)
from ticketloom.spindle import LoopDetector, SpindleResult
from ticketloom.spindle.report import (
    format_spindle_result,
    spindle_recommendations,
    spindle_thresholds,
)
from ticketloom.state import ExecutionStep, StepLedger, StepName, StepStatus
from ticketloom.tickets import Ticket, TicketStatus
from ticketloom.trace import analyze_trace
from ticketloom.workspace import Workspace, WorkspaceError, WorkspaceManager, ticket_slug

console = Console()

ERROR_EXCERPT_CHARS = 500


class FailureReason(str, Enum):
    AGENT_ERROR = "agent_error"
    TIMEOUT = "timeout"
    QA_FAILED = "qa_failed"
    SCOPE_VIOLATION = "scope_violation"
    SPINDLE_ABORT = "spindle_abort"
    SPINDLE_BLOCK = "spindle_block"
    GIT_ERROR = "git_error"
    CANCELLED = "cancelled"


class CompletionOutcome(str, Enum):
    CHANGES_COMMITTED = "changes_committed"
    NO_CHANGES_NEEDED = "no_changes_needed"


class TicketResult(BaseModel):
    ticket_id: str
    success: bool = False
    failure_reason: FailureReason | None = None
    error: str | None = None
    branch_name: str | None = None
    worktree_path: str | None = None
    workspace_preserved: bool = False
    qa_retried: bool = False
    completion_outcome: CompletionOutcome | None = None
    commit_sha: str | None = None
    changed_files: list[str] = Field(default_factory=list)
    violations: list[ScopeViolation] = Field(default_factory=list)
    spindle: SpindleResult | None = None
    steps: list[ExecutionStep] = Field(default_factory=list)
    artifacts: dict[str, str] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    duration_ms: int = 0

    def step(self, name: StepName) -> ExecutionStep | None:
        return next((s for s in self.steps if s.name == name), None)


def status_for_result(result: TicketResult) -> TicketStatus:
    """Default ticket status policy: blocks wait for a human, everything else fails."""
    if result.success:
        return TicketStatus.DONE
    if result.failure_reason == FailureReason.SPINDLE_BLOCK:
        return TicketStatus.BLOCKED
    return TicketStatus.FAILED


def branch_for(ticket: Ticket, prefix: str = "ticketloom/") -> str:
    return f"{prefix}{ticket_slug(ticket.id)}"


def _excerpt(text: str, limit: int = ERROR_EXCERPT_CHARS) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-(limit - 3):]


@dataclass
class _RunContext:
    ticket: Ticket
    ledger: StepLedger
    detector: LoopDetector
    channel: ProgressChannel
    result: TicketResult
    cancel_event: threading.Event
    started: float = field(default_factory=time.monotonic)
    workspace: Workspace | None = None
    qa_commands: list[QACommand] = field(default_factory=list)
    preserve: bool = False
    stopped: bool = False


class TicketRunner:
    """
    Runs one ticket at a time through the pipeline.

    A single WorkspaceManager may be shared by many runners; that is what
    serializes git across concurrent tickets.
    """

    def __init__(
        self,
        repo_path: Path,
        backend: ExecutionBackend,
        config: LoomConfig | None = None,
        workspace_manager: WorkspaceManager | None = None,
        event_bus: EventBus | None = None,
        context_blocks: list[str] | None = None,
        quiet: bool = False,
    ):
        self.repo_path = repo_path.resolve()
        self.config = config or load_config(self.repo_path)
        self.backend = backend
        self.workspaces = workspace_manager or WorkspaceManager(self.repo_path, self.config)
        self.bus = event_bus or default_bus
        self.context_blocks = list(context_blocks if context_blocks is not None else self.config.context_blocks)
        self.quiet = quiet
        self.artifact_root = self.repo_path / self.config.workspace.root_dir

    # -----------------------------------------------------------------------
    # Entry
    # -----------------------------------------------------------------------

    def run(self, ticket: Ticket, cancel_event: threading.Event | None = None) -> TicketResult:
        """Execute the full pipeline for a ticket."""
        ctx = _RunContext(
            ticket=ticket,
            ledger=StepLedger(),
            detector=LoopDetector(self.config.spindle),
            channel=ProgressChannel(self.bus, ticket.id),
            result=TicketResult(ticket_id=ticket.id),
            cancel_event=cancel_event or threading.Event(),
        )

        if not self.quiet:
            console.print(Panel(
                f"[bold green]Ticket:[/] {ticket.title[:120]}\n"
                f"[bold]ID:[/] {ticket.id}  |  [bold]Category:[/] {ticket.category}  |  "
                f"[bold]Complexity:[/] {ticket.complexity.value}",
                title="ticketloom",
                border_style="bright_green",
            ))

        try:
            for stage in (self._stage_workspace, self._stage_agent, self._stage_qa):
                if ctx.stopped or ctx.ledger.failed is not None:
                    break
                if self._cancelled(ctx):
                    break
                stage(ctx)
            if ctx.ledger.failed is None and not ctx.stopped and ctx.result.failure_reason is None:
                ctx.result.success = True
                if ctx.result.completion_outcome is None:
                    ctx.result.completion_outcome = CompletionOutcome.CHANGES_COMMITTED
        except Exception as e:
            logger.exception(f"[RUNNER] Unexpected error in {ticket.id}")
            self._fail_current(ctx, f"Unexpected error: {e}")
        finally:
            self._stage_cleanup(ctx)
            self._finish(ctx)

        return ctx.result

    # -----------------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------------

    def _stage_workspace(self, ctx: _RunContext) -> None:
        self._start(ctx, StepName.WORKSPACE)
        branch = branch_for(ctx.ticket, self.config.workspace.branch_prefix)
        ctx.result.branch_name = branch
        try:
            ws = self.workspaces.create_workspace(branch, ticket_id=ctx.ticket.id)
        except WorkspaceError as e:
            self._fail(ctx, StepName.WORKSPACE, FailureReason.GIT_ERROR, f"Workspace creation failed: {e}")
            return

        ctx.workspace = ws
        ctx.result.worktree_path = str(ws.path)
        preexisting = sorted(ws.preexisting_failures())
        if preexisting:
            ctx.result.warnings.append(f"Pre-existing QA failures ignored: {', '.join(preexisting)}")
        self._succeed(
            ctx,
            StepName.WORKSPACE,
            worktree=str(ws.path),
            branch=ws.branch_name,
            base_branch=ws.base_branch,
            baseline_files=len(ws.baseline_files),
            excluded_patterns=len(ws.excluded_patterns),
            preexisting_qa_failures=preexisting,
        )

    def _stage_agent(self, ctx: _RunContext) -> None:
        ticket = ctx.ticket
        self._start(ctx, StepName.AGENT)
        prompt = build_ticket_prompt(ticket, self.context_blocks)
        res = self._invoke_backend(ctx, prompt, "agent")

        if not res.success:
            self._fail_backend(ctx, StepName.AGENT, res)
            return

        if res.trace_events and not self._check_trace(ctx, res):
            return
        if not self._spindle_check(ctx, StepName.AGENT, res.stdout):
            return
        if not self._validate_scope(ctx, StepName.AGENT, ticket):
            return

        changed = self.workspaces.changed_files(ctx.workspace)
        ctx.result.changed_files = changed
        if not changed:
            logger.info(f"[RUNNER] {ticket.id}: agent made no changes")
            self._succeed(ctx, StepName.AGENT, duration_ms=res.duration_ms, changed_files=[])
            ctx.ledger.skip_remaining("No changes needed")
            ctx.result.completion_outcome = CompletionOutcome.NO_CHANGES_NEEDED
            ctx.stopped = True
            ctx.result.success = True
            return

        if not self._commit(ctx, StepName.AGENT, f"{ticket.category}: {ticket.title}"):
            return
        self._succeed(
            ctx, StepName.AGENT,
            duration_ms=res.duration_ms,
            changed_files=changed,
            commit=ctx.result.commit_sha,
        )

    def _stage_qa(self, ctx: _RunContext) -> None:
        commands = self.config.qa.commands
        if not commands:
            ctx.ledger.skip(StepName.QA, "No QA commands configured")
            return

        self._start(ctx, StepName.QA)
        preexisting = ctx.workspace.preexisting_failures()
        ctx.qa_commands = [c for c in commands if c.name not in preexisting]
        if not ctx.qa_commands:
            self._succeed(ctx, StepName.QA, all_pre_existing=True, skipped=sorted(preexisting))
            return

        qa = run_qa(
            ctx.qa_commands,
            ctx.workspace.path,
            grace_s=self.config.execution.kill_grace_s,
            cancel_event=ctx.cancel_event,
            tail_chars=self.config.qa.output_tail_chars,
        )
        results = [r.model_dump() for r in qa.results]

        if qa.status == QAStatus.SUCCESS:
            self._succeed(ctx, StepName.QA, results=results, skipped=sorted(preexisting))
            return
        if qa.status == QAStatus.CANCELLED:
            self._fail(ctx, StepName.QA, FailureReason.CANCELLED, "QA cancelled", results=results)
            return

        failed = qa.first_failure
        ctx.detector.record_command_failure(failed.cmd, failed.output_tail)

        if self.config.qa.retry_with_test_fix and is_test_failure(failed.name):
            self._stage_qa_retry(ctx, failed)
            return

        self._fail(ctx, StepName.QA, FailureReason.QA_FAILED, self._qa_failure_message(failed), results=results)

    def _stage_qa_retry(self, ctx: _RunContext, failed: QACommandResult) -> None:
        """One scope-expanded attempt to fix the tests the change broke."""
        ticket = ctx.ticket
        self._start(ctx, StepName.QA_RETRY)
        first_error = self._qa_failure_message(failed)

        if self._cancelled(ctx):
            return

        test_files = extract_test_files(failed.output_tail)
        if not test_files:
            self._fail_retry(
                ctx,
                FailureReason.QA_FAILED,
                f"{first_error}\n\nCould not identify test files to fix from the output of {failed.name}.",
            )
            return

        logger.info(f"[RUNNER] {ticket.id}: retrying with test fix for {', '.join(test_files)}")
        ctx.result.qa_retried = True
        expanded = ticket.with_allowed_paths(test_files)
        prompt = build_test_fix_prompt(expanded, test_files, failed.output_tail, self.context_blocks)
        res = self._invoke_backend(ctx, prompt, "qa-retry")

        if not res.success:
            self._fail_backend(ctx, StepName.QA_RETRY, res)
            return
        if not self._spindle_check(ctx, StepName.QA_RETRY, res.stdout):
            return
        if not self._validate_scope(ctx, StepName.QA_RETRY, expanded):
            return

        if not self._commit(ctx, StepName.QA_RETRY, f"fix: update tests for {ticket.title}"):
            return

        qa = run_qa(
            ctx.qa_commands,
            ctx.workspace.path,
            grace_s=self.config.execution.kill_grace_s,
            cancel_event=ctx.cancel_event,
            tail_chars=self.config.qa.output_tail_chars,
        )
        results = [r.model_dump() for r in qa.results]
        if qa.status != QAStatus.SUCCESS:
            again = qa.first_failure
            if again is not None:
                ctx.detector.record_command_failure(again.cmd, again.output_tail)
                message = "QA still failing after test-fix retry.\n\n" + self._qa_failure_message(again)
            else:
                message = "QA cancelled during test-fix retry"
            reason = FailureReason.CANCELLED if qa.status == QAStatus.CANCELLED else FailureReason.QA_FAILED
            self._fail_retry(ctx, reason, message, results=results)
            return

        ctx.result.changed_files = self.workspaces.changed_files(ctx.workspace) or ctx.result.changed_files
        self._succeed(ctx, StepName.QA_RETRY, test_files=test_files, commit=ctx.result.commit_sha, results=results)
        self._succeed(ctx, StepName.QA, first_failure=failed.name, retried=True, results=results)

    def _stage_cleanup(self, ctx: _RunContext) -> None:
        ledger = ctx.ledger
        step = ledger.require(StepName.CLEANUP)
        if step.status != StepStatus.PENDING:
            return

        if ctx.preserve and ctx.workspace is not None:
            ctx.result.workspace_preserved = True
            ledger.skip(StepName.CLEANUP, f"Workspace preserved for inspection: {ctx.workspace.path}")
            ctx.channel.step(StepName.CLEANUP.value, StepStatus.SKIPPED.value)
            logger.warning(f"[RUNNER] {ctx.ticket.id}: worktree preserved at {ctx.workspace.path}")
            return

        ledger.start(StepName.CLEANUP)
        if ctx.workspace is not None:
            self.workspaces.destroy_workspace(ctx.workspace)
        ledger.succeed(StepName.CLEANUP, removed=ctx.workspace is not None)
        ctx.channel.step(StepName.CLEANUP.value, StepStatus.SUCCESS.value)

    # -----------------------------------------------------------------------
    # Stage helpers
    # -----------------------------------------------------------------------

    def _invoke_backend(self, ctx: _RunContext, prompt: str, phase: str) -> BackendResult:
        ctx.channel.progress(f"Running {self.backend.name} backend ({phase})")
        request = BackendRequest(
            worktree_path=ctx.workspace.path,
            prompt=prompt,
            timeout_s=self.config.execution.timeout_s,
            kill_grace_s=self.config.execution.kill_grace_s,
            channel=ctx.channel,
            cancel_event=ctx.cancel_event,
        )
        res = self.backend.run(request)
        self._artifact(ctx, ArtifactType.EXECUTIONS, f"{phase}-execution", {
            "ticket_id": ctx.ticket.id,
            "phase": phase,
            "backend": self.backend.name,
            "prompt": prompt,
            "success": res.success,
            "exit_code": res.exit_code,
            "timed_out": res.timed_out,
            "duration_ms": res.duration_ms,
            "error": res.error,
            "stdout": res.stdout,
            "stderr": res.stderr,
        })
        return res

    def _fail_backend(self, ctx: _RunContext, step: StepName, res: BackendResult) -> None:
        if ctx.cancel_event.is_set():
            reason = FailureReason.CANCELLED
            headline = "Agent cancelled"
        elif res.timed_out:
            reason = FailureReason.TIMEOUT
            headline = "Agent timed out"
        else:
            reason = FailureReason.AGENT_ERROR
            headline = "Agent execution failed"

        lines = [headline]
        if res.error:
            lines.append(f"Error: {_excerpt(res.error)}")
        if reason == FailureReason.TIMEOUT:
            lines.append(
                f"The backend ran longer than {self.config.execution.timeout_s:.0f}s; "
                "split the ticket or raise execution.timeout_s."
            )
        else:
            lines.append("Check the execution log for the backend's own error output.")
        lines.append(f"To retry: ticketloom run --repo {self.repo_path} --ticket <ticket file>")
        log = ctx.result.artifacts.get(f"{step.value}-execution")
        if log:
            lines.append(f"Log: {log}")

        self._fail(
            ctx, step, reason, "\n".join(lines),
            preserve=step == StepName.QA_RETRY,
            exit_code=res.exit_code,
        )
        if step == StepName.QA_RETRY:
            self._close_qa(ctx)

    def _check_trace(self, ctx: _RunContext, res: BackendResult) -> bool:
        analysis = analyze_trace(res.trace_events, self.config.trace.triggers)
        self._artifact(ctx, ArtifactType.TRACES, "trace", analysis)
        ctx.detector.note_idle_gap(analysis.liveness.max_gap_ms)

        for alert in analysis.alerts:
            if alert.action == "warn":
                ctx.result.warnings.append(f"Trigger {alert.rule_name}: {alert.message}")

        abort = analysis.abort_alert()
        if abort is not None:
            self._fail(ctx, StepName.AGENT, FailureReason.AGENT_ERROR, f"Trigger abort: {abort.message}")
            return False
        return True

    def _spindle_check(self, ctx: _RunContext, step: StepName, output: str) -> bool:
        diff = self.workspaces.diff(ctx.workspace)
        if diff.strip():
            self._artifact(ctx, ArtifactType.DIFFS, f"{step.value}-diff", {"ticket_id": ctx.ticket.id, "diff": diff})

        result = ctx.detector.check(output, diff)
        for warning in ctx.detector.drain_warnings():
            if warning not in ctx.result.warnings:
                ctx.result.warnings.append(warning)

        if not result.triggered:
            return True

        ctx.result.spindle = result
        explanation = format_spindle_result(result)
        self._artifact(ctx, ArtifactType.SPINDLE, "spindle", {
            "ticket_id": ctx.ticket.id,
            "result": result,
            "thresholds": spindle_thresholds(self.config.spindle),
            "recommendations": spindle_recommendations(result),
            "state": ctx.detector.state.snapshot(),
            "formatted": explanation,
        })
        reason = FailureReason.SPINDLE_BLOCK if result.should_block else FailureReason.SPINDLE_ABORT
        self._fail(ctx, step, reason, explanation, preserve=step == StepName.QA_RETRY)
        if step == StepName.QA_RETRY:
            self._close_qa(ctx)
        return False

    def _validate_scope(self, ctx: _RunContext, step: StepName, ticket: Ticket) -> bool:
        changed = self.workspaces.changed_files(ctx.workspace)
        violations = check_scope_violations(changed, ticket.allowed_paths, ticket.forbidden_paths)
        if not violations:
            return True

        suggestions = analyze_violations_for_expansion(violations, ticket.allowed_paths)
        ctx.result.violations = violations
        ctx.result.changed_files = changed
        self._artifact(ctx, ArtifactType.VIOLATIONS, "violations", {
            "ticket_id": ticket.id,
            "changed_files": changed,
            "allowed_paths": ticket.allowed_paths,
            "forbidden_paths": ticket.forbidden_paths,
            "violations": violations,
            "suggested_expansions": suggestions,
        })

        lines = ["Scope violation: changes outside the ticket's allowed scope"]
        lines.extend(f"  - {v.describe()}" for v in violations[:20])
        if suggestions:
            lines.append("Consider adding to allowed_paths: " + ", ".join(suggestions))
        if ctx.workspace is not None:
            lines.append(f"Worktree kept for inspection: {ctx.workspace.path}")

        logger.warning(f"[SCOPE] {ticket.id}: {len(violations)} violation(s)")
        self._fail(
            ctx, step, FailureReason.SCOPE_VIOLATION, "\n".join(lines),
            preserve=True,
            violations=[v.model_dump(mode="json") for v in violations],
        )
        if step == StepName.QA_RETRY:
            self._close_qa(ctx)
        return False

    def _commit(self, ctx: _RunContext, step: StepName, message: str) -> bool:
        try:
            sha = self.workspaces.commit(ctx.workspace, message)
        except WorkspaceError as e:
            self._fail(ctx, step, FailureReason.GIT_ERROR, f"Commit failed: {e}", preserve=step == StepName.QA_RETRY)
            if step == StepName.QA_RETRY:
                self._close_qa(ctx)
            return False
        if sha:
            ctx.result.commit_sha = sha
        return True

    def _qa_failure_message(self, failed: QACommandResult) -> str:
        return "\n".join([
            f"QA failed at: {failed.name}",
            "",
            _excerpt(failed.output_tail),
            "",
            f"Fix the failure reported by `{failed.cmd}`, then re-run the ticket.",
        ])

    def _fail_retry(self, ctx: _RunContext, reason: FailureReason, message: str, **metadata: Any) -> None:
        self._fail(ctx, StepName.QA_RETRY, reason, message, preserve=True, **metadata)
        self._close_qa(ctx)

    def _close_qa(self, ctx: _RunContext) -> None:
        """The qa step stays open while its retry runs; close it as failed."""
        step = ctx.ledger.get(StepName.QA)
        if step is not None and step.status == StepStatus.STARTED:
            step.error = "QA failed; test-fix retry did not recover"
            step.transition(StepStatus.FAILED)

    # -----------------------------------------------------------------------
    # Ledger plumbing
    # -----------------------------------------------------------------------

    def _cancelled(self, ctx: _RunContext) -> bool:
        if not ctx.cancel_event.is_set():
            return False
        ctx.result.success = False
        ctx.result.failure_reason = FailureReason.CANCELLED
        ctx.result.error = "Cancelled"
        for step in ctx.ledger.steps:
            if step.name != StepName.CLEANUP and step.status == StepStatus.STARTED:
                step.error = "Cancelled"
                step.transition(StepStatus.FAILED)
        ctx.ledger.skip_remaining("Cancelled")
        if ctx.result.qa_retried:
            ctx.preserve = True
        return True

    def _start(self, ctx: _RunContext, name: StepName) -> None:
        ctx.ledger.start(name)
        ctx.channel.step(name.value, StepStatus.STARTED.value)

    def _succeed(self, ctx: _RunContext, name: StepName, **metadata: Any) -> None:
        ctx.ledger.succeed(name, **metadata)
        ctx.channel.step(name.value, StepStatus.SUCCESS.value)

    def _fail(
        self,
        ctx: _RunContext,
        name: StepName,
        reason: FailureReason,
        error: str,
        preserve: bool = False,
        **metadata: Any,
    ) -> None:
        ctx.ledger.fail(name, error, failure_reason=reason.value, **metadata)
        ctx.result.success = False
        ctx.result.failure_reason = reason
        ctx.result.error = error
        ctx.preserve = ctx.preserve or preserve
        ctx.channel.step(name.value, StepStatus.FAILED.value, reason=reason.value)
        logger.warning(f"[RUNNER] {ctx.ticket.id}: {name.value} failed ({reason.value})")

    def _fail_current(self, ctx: _RunContext, error: str) -> None:
        started = [s for s in ctx.ledger.steps if s.status == StepStatus.STARTED and s.name != StepName.CLEANUP]
        if not started:
            ctx.ledger.skip_remaining(error)
            ctx.result.success = False
            ctx.result.failure_reason = ctx.result.failure_reason or FailureReason.AGENT_ERROR
            ctx.result.error = error
            return

        for step in started[:-1]:
            step.error = error
            step.transition(StepStatus.FAILED)
        name = started[-1].name
        reason = FailureReason.GIT_ERROR if name == StepName.WORKSPACE else FailureReason.AGENT_ERROR
        self._fail(ctx, name, reason, error, preserve=ctx.result.qa_retried)

    def _artifact(self, ctx: _RunContext, kind: ArtifactType, name: str, data: Any) -> None:
        try:
            path = write_json_artifact(self.artifact_root, kind, ctx.ticket.id, data)
        except (OSError, ArtifactError, TypeError) as e:
            logger.warning(f"[RUNNER] Could not write {kind.value} artifact: {e}")
            return
        ctx.result.artifacts[name] = str(path)

    def _finish(self, ctx: _RunContext) -> None:
        result = ctx.result
        result.duration_ms = int((time.monotonic() - ctx.started) * 1000)
        result.steps = [s.model_copy(deep=True) for s in ctx.ledger.steps]
        if result.success:
            result.failure_reason = None
            result.error = None

        self._artifact(ctx, ArtifactType.RUNS, "run", result)
        self.bus.emit("ticket_finished", ctx.ticket.id, {
            "success": result.success,
            "failure_reason": result.failure_reason.value if result.failure_reason else None,
            "duration_ms": result.duration_ms,
        })

        if self.quiet:
            return
        if result.success:
            console.print(f"[bold green]✅ {ctx.ticket.id}: {result.completion_outcome.value}[/]")
        else:
            reason = result.failure_reason.value if result.failure_reason else "error"
            console.print(f"[bold red]❌ {ctx.ticket.id}: {reason}[/]")
            if result.error:
                console.print(f"[dim]{result.error}[/]", highlight=False)
