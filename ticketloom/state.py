from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class InvalidStepTransition(Exception):
    pass


class StepName(str, Enum):
    WORKSPACE = "workspace"
    AGENT = "agent"
    QA = "qa"
    QA_RETRY = "qa-retry"
    CLEANUP = "cleanup"


STEP_ORDER = [StepName.WORKSPACE, StepName.AGENT, StepName.QA, StepName.QA_RETRY, StepName.CLEANUP]


class StepStatus(str, Enum):
    PENDING = "pending"
    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.SKIPPED)


_ALLOWED: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.STARTED, StepStatus.SKIPPED},
    StepStatus.STARTED: {StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.SKIPPED},
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ExecutionStep(BaseModel):
    """Tracks the status of one pipeline stage."""
    name: StepName
    status: StepStatus = StepStatus.PENDING
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    artifacts: dict[str, str] = Field(default_factory=dict)
    started_at: str | None = None
    finished_at: str | None = None

    def transition(self, status: StepStatus) -> None:
        if status not in _ALLOWED.get(self.status, set()):
            raise InvalidStepTransition(f"{self.name.value}: {self.status.value} -> {status.value}")
        self.status = status
        if status == StepStatus.STARTED:
            self.started_at = _now()
        elif status.terminal:
            self.finished_at = _now()


class StepLedger(BaseModel):
    """
    Ordered record of a ticket's stages.

    Failure is monotonic: once a stage fails, every remaining non-cleanup
    stage is skipped. The qa-retry stage is only added when it triggers.
    """
    steps: list[ExecutionStep] = Field(
        default_factory=lambda: [
            ExecutionStep(name=n) for n in STEP_ORDER if n != StepName.QA_RETRY
        ]
    )

    def get(self, name: StepName) -> ExecutionStep | None:
        return next((s for s in self.steps if s.name == name), None)

    def require(self, name: StepName) -> ExecutionStep:
        step = self.get(name)
        if step is None:
            step = ExecutionStep(name=name)
            order = STEP_ORDER.index(name)
            idx = next(
                (i for i, s in enumerate(self.steps) if STEP_ORDER.index(s.name) > order),
                len(self.steps),
            )
            self.steps.insert(idx, step)
        return step

    @property
    def failed(self) -> ExecutionStep | None:
        return next((s for s in self.steps if s.status == StepStatus.FAILED), None)

    def start(self, name: StepName) -> ExecutionStep:
        if self.failed is not None and name != StepName.CLEANUP:
            raise InvalidStepTransition(f"Cannot start {name.value}: ledger already failed")
        step = self.require(name)
        step.transition(StepStatus.STARTED)
        return step

    def succeed(self, name: StepName, **metadata: Any) -> ExecutionStep:
        step = self.require(name)
        step.metadata.update(metadata)
        step.transition(StepStatus.SUCCESS)
        return step

    def fail(self, name: StepName, error: str, **metadata: Any) -> ExecutionStep:
        step = self.require(name)
        step.error = error
        step.metadata.update(metadata)
        step.transition(StepStatus.FAILED)
        self.skip_remaining(f"Skipped: {name.value} failed")
        return step

    def skip(self, name: StepName, reason: str) -> ExecutionStep:
        step = self.require(name)
        step.error = reason
        step.transition(StepStatus.SKIPPED)
        return step

    def skip_remaining(self, reason: str) -> None:
        for step in self.steps:
            if step.name != StepName.CLEANUP and step.status == StepStatus.PENDING:
                step.error = reason
                step.transition(StepStatus.SKIPPED)

    def summary(self) -> dict[str, str]:
        return {s.name.value: s.status.value for s in self.steps}
