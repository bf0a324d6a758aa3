"""
Configuration loader for ticketloom.
Merges defaults with per-repo .ticketloom/config.yaml overrides.
"""

from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class QAConfigError(Exception):
    pass


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class ExecutionConfig(BaseModel):
    command: list[str] = Field(default_factory=lambda: ["claude", "-p"])
    timeout_s: float = 600.0
    kill_grace_s: float = 1.5


class WorkspaceConfig(BaseModel):
    root_dir: str = ".ticketloom"
    worktree_dir: str = ".ticketloom/worktrees"
    log_dir: str = ".ticketloom/logs"
    branch_prefix: str = "ticketloom/"
    base_branch: str | None = None
    setup_command: str | None = None
    setup_timeout_s: float = 300.0
    git_timeout_s: float = 60.0
    exclusion_max_depth: int = 4


class QACommand(BaseModel):
    """A named shell command run inside the worktree."""
    name: str
    cmd: str
    cwd: str = "."
    timeout_s: float = 600.0


class QAConfig(BaseModel):
    commands: list[QACommand] = Field(default_factory=list)
    capture_baseline: bool = True
    retry_with_test_fix: bool = True
    output_tail_chars: int = 2000

    @model_validator(mode="after")
    def _unique_names(self) -> "QAConfig":
        seen: set[str] = set()
        for command in self.commands:
            if not command.name.strip():
                raise QAConfigError("QA command is missing a name")
            if not command.cmd.strip():
                raise QAConfigError(f"QA command '{command.name}' is missing cmd")
            if command.name in seen:
                raise QAConfigError(f"Duplicate QA command name: {command.name}")
            seen.add(command.name)
        return self


class SpindleConfig(BaseModel):
    enabled: bool = True
    similarity_threshold: float = 0.8
    max_similar_outputs: int = 3
    max_stall_iterations: int = 5
    verbosity_threshold: float = 10.0
    token_budget_warning: int = 100_000
    token_budget_abort: int = 140_000
    max_command_failures: int = 3
    max_qa_ping_pong: int = 3
    max_file_edits: int = 3
    max_stall_minutes: float = 30.0

    @field_validator("similarity_threshold")
    @classmethod
    def _threshold_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("similarity_threshold must be within [0, 1]")
        return v


class SchedulerConfig(BaseModel):
    min_parallel: int = 2
    max_parallel: int = 5


class TriggerCondition(BaseModel):
    type: Literal["stall_duration_ms", "token_threshold", "error_pattern", "tool_error_rate"]
    threshold: float = 0.0
    pattern: str | None = None
    tool: str | None = None


class TriggerRule(BaseModel):
    id: str
    name: str
    condition: TriggerCondition
    action: Literal["warn", "abort", "log"] = "warn"
    message: str | None = None


class TraceConfig(BaseModel):
    triggers: list[TriggerRule] = Field(default_factory=list)


class LoomConfig(BaseModel):
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    qa: QAConfig = Field(default_factory=QAConfig)
    spindle: SpindleConfig = Field(default_factory=SpindleConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    trace: TraceConfig = Field(default_factory=TraceConfig)
    context_blocks: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    command = os.environ.get("TICKETLOOM_BACKEND_COMMAND")
    if command:
        overrides.setdefault("execution", {})["command"] = shlex.split(command)
    timeout = os.environ.get("TICKETLOOM_TIMEOUT_S")
    if timeout:
        overrides.setdefault("execution", {})["timeout_s"] = float(timeout)
    return overrides


def load_config(repo_path: Path | None = None) -> LoomConfig:
    """
    Load config by merging:
      1. Built-in defaults (ticketloom/config.yaml)
      2. Repo-level overrides (<repo>/.ticketloom/config.yaml)
      3. Environment variable overrides (TICKETLOOM_*)
    """
    # 1. Built-in defaults
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    # 2. Repo overrides
    if repo_path:
        repo_config = repo_path / ".ticketloom" / "config.yaml"
        if repo_config.exists():
            with open(repo_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    # 3. Env overrides
    base = _deep_merge(base, _env_overrides())
    return LoomConfig(**base)
