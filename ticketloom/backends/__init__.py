"""
Execution backends — whatever actually drives the coding agent.

The pipeline only depends on ``ExecutionBackend.run``: given a worktree and
a prompt, do the work in place and report how it went.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from ticketloom.event_bus import ProgressChannel
from ticketloom.trace import TraceEvent


class BackendError(Exception):
    pass


class BackendRequest(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    worktree_path: Path
    prompt: str
    timeout_s: float = 600.0
    kill_grace_s: float = 1.5
    channel: ProgressChannel | None = None
    cancel_event: threading.Event | None = None


class BackendResult(BaseModel):
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False
    duration_ms: int = 0
    error: str | None = None
    trace_events: list[TraceEvent] = Field(default_factory=list)


class ExecutionBackend(ABC):
    """Base class for agent backends."""

    name: str = "backend"

    @abstractmethod
    def run(self, request: BackendRequest) -> BackendResult:
        """Execute the prompt inside ``request.worktree_path``."""
        ...


from ticketloom.backends.command import CommandBackend  # noqa: E402

__all__ = [
    "BackendError",
    "BackendRequest",
    "BackendResult",
    "CommandBackend",
    "ExecutionBackend",
]
