"""
Spindle state and result models.

SpindleState is the per-ticket working memory of the loop detector. Every
collection in it is bounded: rings evict on push, the file edit map is
compacted to its highest counts.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

OUTPUT_RING_EXTRA = 1
DIFF_RING_SIZE = 5
FAILING_COMMAND_RING_SIZE = 20
FILE_EDIT_CAP = 200
WARNING_RING_SIZE = 50


class SpindleReason(str, Enum):
    OSCILLATION = "oscillation"
    SPINNING = "spinning"
    STALLING = "stalling"
    REPETITION = "repetition"
    TOKEN_BUDGET = "token_budget"
    QA_PING_PONG = "qa_ping_pong"
    COMMAND_FAILURE = "command_failure"
    TIME_STALL = "time_stall"


class SpindleDiagnostics(BaseModel):
    estimated_tokens: int = 0
    iterations_without_change: int = 0
    similarity_score: float | None = None
    repeated_patterns: list[str] = Field(default_factory=list)
    oscillation_pattern: str | None = None
    command_signature: str | None = None
    ping_pong_pattern: str | None = None
    minutes_since_progress: float | None = None
    max_stall_minutes: float | None = None
    file_edit_warnings: list[str] = Field(default_factory=list)


class SpindleResult(BaseModel):
    should_abort: bool = False
    should_block: bool = False
    reason: SpindleReason | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    diagnostics: SpindleDiagnostics = Field(default_factory=SpindleDiagnostics)

    @model_validator(mode="after")
    def _abort_xor_block(self) -> "SpindleResult":
        if self.should_abort and self.should_block:
            raise ValueError("A Spindle result cannot both abort and block")
        if (self.should_abort or self.should_block) and self.reason is None:
            raise ValueError("A triggered Spindle result needs a reason")
        return self

    @property
    def triggered(self) -> bool:
        return self.should_abort or self.should_block


class FileEditCounter:
    """Per-file edit counts, capped at ``cap`` keys."""

    def __init__(self, cap: int = FILE_EDIT_CAP):
        self.cap = cap
        self._counts: dict[str, int] = {}

    def bump(self, path: str) -> int:
        self._counts[path] = self._counts.get(path, 0) + 1
        if len(self._counts) > self.cap:
            self._compact()
        return self._counts.get(path, 0)

    def _compact(self) -> None:
        # sorted() is stable, so ties keep the oldest keys
        ranked = sorted(self._counts.items(), key=lambda item: item[1], reverse=True)
        self._counts = dict(ranked[: self.cap])

    def items(self):
        return self._counts.items()

    def get(self, path: str) -> int:
        return self._counts.get(path, 0)

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, path: object) -> bool:
        return path in self._counts


@dataclass
class SpindleState:
    max_similar_outputs: int = 3
    outputs: deque[str] = field(init=False)
    diffs: deque[str] = field(default_factory=lambda: deque(maxlen=DIFF_RING_SIZE))
    failing_commands: deque[str] = field(
        default_factory=lambda: deque(maxlen=FAILING_COMMAND_RING_SIZE)
    )
    file_edit_counts: FileEditCounter = field(default_factory=FileEditCounter)
    warnings: deque[str] = field(default_factory=lambda: deque(maxlen=WARNING_RING_SIZE))
    iterations_since_change: int = 0
    estimated_tokens: int = 0
    total_output_chars: int = 0
    total_change_chars: int = 0
    last_progress_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.outputs = deque(maxlen=self.max_similar_outputs + OUTPUT_RING_EXTRA)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly view for artifacts."""
        return {
            "iterations_since_change": self.iterations_since_change,
            "estimated_tokens": self.estimated_tokens,
            "total_output_chars": self.total_output_chars,
            "total_change_chars": self.total_change_chars,
            "last_progress_at": self.last_progress_at,
            "recent_outputs": [out[:500] for out in self.outputs],
            "recent_diffs": [d[:1000] for d in self.diffs],
            "failing_commands": list(self.failing_commands),
            "file_edit_counts": dict(self.file_edit_counts.items()),
            "warnings": list(self.warnings),
        }
