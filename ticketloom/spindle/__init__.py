"""
Spindle — loop and stall detection for agent sessions.

The detector is fed one (output, diff) pair per agent iteration and decides
whether the session should continue, abort (the agent is confused) or block
(an external failure a human has to look at). Checks run in a fixed
priority order and the first match wins.
"""

from __future__ import annotations

import math
import time
from typing import Callable

from loguru import logger

from ticketloom.config_loader import SpindleConfig
from ticketloom.spindle.patterns import (
    command_signature,
    detect_command_failure,
    detect_oscillation,
    detect_ping_pong,
    detect_repetition,
    extract_files_from_diff,
)
from ticketloom.spindle.state import (
    SpindleDiagnostics,
    SpindleReason,
    SpindleResult,
    SpindleState,
)

__all__ = [
    "LoopDetector",
    "SpindleDiagnostics",
    "SpindleReason",
    "SpindleResult",
    "SpindleState",
    "estimate_tokens",
]

CHARS_PER_TOKEN = 4
VERBOSITY_MIN_OUTPUT_CHARS = 5000
IDLE_GAP_TRIGGER_MS = 60_000
IDLE_GAP_ITERATION_MS = 30_000


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class LoopDetector:
    """Per-ticket Spindle instance. Not shared across tickets."""

    def __init__(self, config: SpindleConfig | None = None, clock: Callable[[], float] = time.time):
        self.config = config or SpindleConfig()
        self._clock = clock
        self.state = SpindleState(
            max_similar_outputs=self.config.max_similar_outputs,
            last_progress_at=clock(),
        )

    # -- inputs ------------------------------------------------------------

    def record_command_failure(self, command: str, error: str) -> str:
        signature = command_signature(command, error)
        self.state.failing_commands.append(signature)
        logger.debug(f"[SPINDLE] Command failure recorded: {command} ({signature})")
        return signature

    def note_idle_gap(self, max_gap_ms: float) -> None:
        """Long silences in a trace count as stalled iterations."""
        if max_gap_ms > IDLE_GAP_TRIGGER_MS:
            self.state.iterations_since_change = max(
                self.state.iterations_since_change,
                int(max_gap_ms // IDLE_GAP_ITERATION_MS),
            )

    def drain_warnings(self) -> list[str]:
        warnings = list(self.state.warnings)
        self.state.warnings.clear()
        return warnings

    # -- main check --------------------------------------------------------

    def check(self, output: str, diff: str | None) -> SpindleResult:
        cfg = self.config
        state = self.state
        diff = diff or ""

        if not cfg.enabled:
            return SpindleResult(diagnostics=self._diagnostics())

        state.estimated_tokens += estimate_tokens(output) + estimate_tokens(diff)
        state.total_output_chars += len(output)
        state.total_change_chars += len(diff)
        state.outputs.append(output)

        if diff.strip():
            state.diffs.append(diff)
            for path in extract_files_from_diff(diff):
                state.file_edit_counts.bump(path)
            state.iterations_since_change = 0
            state.last_progress_at = self._clock()
        else:
            state.iterations_since_change += 1

        # 1. Token budget
        if state.estimated_tokens >= cfg.token_budget_abort:
            return self._trigger(SpindleReason.TOKEN_BUDGET, 1.0)
        if state.estimated_tokens >= cfg.token_budget_warning:
            state.warn(
                f"Approaching token budget: ~{state.estimated_tokens:,} of {cfg.token_budget_abort:,} tokens"
            )

        # 2. Iteration stall
        if state.iterations_since_change >= cfg.max_stall_iterations:
            return self._trigger(SpindleReason.STALLING, 0.9)

        # 3. Wall-clock stall
        if cfg.max_stall_minutes > 0:
            minutes = (self._clock() - state.last_progress_at) / 60.0
            if minutes >= cfg.max_stall_minutes:
                return self._trigger(
                    SpindleReason.TIME_STALL,
                    0.95,
                    minutes_since_progress=round(minutes, 1),
                    max_stall_minutes=cfg.max_stall_minutes,
                )

        # 4. Oscillation
        if len(state.diffs) >= 2:
            osc = detect_oscillation(state.diffs, cfg.similarity_threshold)
            if osc.detected:
                return self._trigger(
                    SpindleReason.OSCILLATION,
                    osc.confidence,
                    oscillation_pattern=osc.pattern,
                    similarity_score=osc.confidence,
                )

        # 5. Repetition
        if len(state.outputs) >= 2:
            rep = detect_repetition(state.outputs, cfg.similarity_threshold, cfg.max_similar_outputs)
            if rep.detected:
                return self._trigger(
                    SpindleReason.REPETITION,
                    rep.confidence,
                    similarity_score=rep.confidence,
                    repeated_patterns=rep.patterns,
                )

        # 6. Verbosity (warning only)
        if state.total_output_chars > VERBOSITY_MIN_OUTPUT_CHARS and state.total_change_chars > 0:
            ratio = state.total_output_chars / state.total_change_chars
            if ratio >= cfg.verbosity_threshold:
                state.warn(f"High verbosity ratio: {ratio:.1f}x output vs changes")

        # 7. QA ping-pong
        ping = detect_ping_pong(state.failing_commands, cfg.max_qa_ping_pong)
        if ping.detected:
            return self._trigger(SpindleReason.QA_PING_PONG, ping.confidence, ping_pong_pattern=ping.pattern)

        # 8. Repeated command failure
        repeated = detect_command_failure(state.failing_commands, cfg.max_command_failures)
        if repeated.detected:
            return self._trigger(
                SpindleReason.COMMAND_FAILURE,
                repeated.confidence,
                block=True,
                command_signature=repeated.pattern,
            )

        # 9. File churn (warning only)
        churn = self._file_churn_warnings()
        for warning in churn:
            state.warn(warning)

        return SpindleResult(diagnostics=self._diagnostics(file_edit_warnings=churn))

    # -- helpers -----------------------------------------------------------

    def _file_churn_warnings(self) -> list[str]:
        return [
            f"File churn: {path} edited {count} times"
            for path, count in self.state.file_edit_counts.items()
            if count >= self.config.max_file_edits
        ]

    def _diagnostics(self, **extra) -> SpindleDiagnostics:
        return SpindleDiagnostics(
            estimated_tokens=self.state.estimated_tokens,
            iterations_without_change=self.state.iterations_since_change,
            **extra,
        )

    def _trigger(self, reason: SpindleReason, confidence: float, block: bool = False, **extra) -> SpindleResult:
        result = SpindleResult(
            should_abort=not block,
            should_block=block,
            reason=reason,
            confidence=min(1.0, max(0.0, confidence)),
            diagnostics=self._diagnostics(**extra),
        )
        verb = "block" if block else "abort"
        logger.warning(f"[SPINDLE] {verb}: {reason.value} (confidence {result.confidence:.0%})")
        return result
