"""
QA runner — named shell commands executed inside a ticket's worktree.

Commands run in order through ``sh -c`` and stop at the first failure. The
same runner captures the pre-agent baseline so failures that already exist
on the base branch are never blamed on the agent.
"""

from __future__ import annotations

import threading
from enum import Enum
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

from ticketloom.config_loader import QACommand
from ticketloom.process import DEFAULT_GRACE_S, CommandResult, run_command

TAIL_CHARS = 2000


class QAStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QACommandResult(BaseModel):
    name: str
    cmd: str
    passed: bool
    exit_code: int | None = None
    timed_out: bool = False
    duration_ms: int = 0
    output_tail: str = ""


class QARunResult(BaseModel):
    status: QAStatus
    results: list[QACommandResult] = Field(default_factory=list)

    @property
    def first_failure(self) -> QACommandResult | None:
        return next((r for r in self.results if not r.passed), None)


class QABaselineEntry(BaseModel):
    passed: bool
    output: str = ""


def truncate_tail(text: str, limit: int = TAIL_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[-limit:] + "\n... (truncated)"


def _failure_output(res: CommandResult) -> str:
    if res.timed_out:
        return f"Timed out after {res.duration_ms}ms\n{res.stderr or res.stdout}".strip()
    return res.stderr.strip() or res.stdout.strip() or f"exit code {res.exit_code}"


def _run_one(
    command: QACommand,
    worktree: Path,
    grace_s: float,
    cancel_event: threading.Event | None,
) -> CommandResult:
    cwd = (worktree / command.cwd).resolve()
    return run_command(
        ["sh", "-c", command.cmd],
        cwd=cwd,
        timeout_s=command.timeout_s,
        grace_s=grace_s,
        cancel_event=cancel_event,
    )


def run_qa(
    commands: list[QACommand],
    worktree: Path,
    *,
    grace_s: float = DEFAULT_GRACE_S,
    cancel_event: threading.Event | None = None,
    tail_chars: int = TAIL_CHARS,
) -> QARunResult:
    results: list[QACommandResult] = []

    for command in commands:
        logger.info(f"[QA] Running {command.name}: {command.cmd}")
        res = _run_one(command, worktree, grace_s, cancel_event)
        passed = res.ok
        output = (res.stdout + res.stderr) if passed else _failure_output(res)
        results.append(QACommandResult(
            name=command.name,
            cmd=command.cmd,
            passed=passed,
            exit_code=res.exit_code,
            timed_out=res.timed_out,
            duration_ms=res.duration_ms,
            output_tail=truncate_tail(output, tail_chars),
        ))

        if res.cancelled:
            return QARunResult(status=QAStatus.CANCELLED, results=results)
        if not passed:
            logger.warning(f"[QA] {command.name} failed (exit {res.exit_code})")
            return QARunResult(status=QAStatus.FAILED, results=results)

    return QARunResult(status=QAStatus.SUCCESS, results=results)


def capture_qa_baseline(
    commands: list[QACommand],
    worktree: Path,
    *,
    grace_s: float = DEFAULT_GRACE_S,
    tail_chars: int = TAIL_CHARS,
) -> dict[str, QABaselineEntry]:
    """Run every command once (no early stop) and record pass/fail."""
    baseline: dict[str, QABaselineEntry] = {}
    for command in commands:
        res = _run_one(command, worktree, grace_s, None)
        if res.ok:
            baseline[command.name] = QABaselineEntry(passed=True)
        else:
            baseline[command.name] = QABaselineEntry(
                passed=False,
                output=truncate_tail(_failure_output(res), tail_chars),
            )
            logger.info(f"[QA] Baseline: {command.name} already failing")
    return baseline
