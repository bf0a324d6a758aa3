import subprocess
from pathlib import Path
from typing import Callable

import pytest

from ticketloom.backends import BackendRequest, BackendResult, ExecutionBackend
from ticketloom.config_loader import LoomConfig, QACommand, QAConfig
from ticketloom.event_bus import EventBus


def git(cwd: Path, *args: str) -> str:
    res = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return res.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A small repository on ``main`` with one commit and no remote."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")

    (repo / "src").mkdir()
    (repo / "src" / "a.ts").write_text("export const a = 1;\n")
    (repo / "src" / "b.ts").write_text("export const b = 1;\n")
    (repo / "README.md").write_text("# demo\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "initial")
    return repo


def make_config(*qa: QACommand, **spindle) -> LoomConfig:
    config = LoomConfig(qa=QAConfig(commands=list(qa)))
    config.execution.timeout_s = 30
    config.execution.kill_grace_s = 0.2
    for key, value in spindle.items():
        setattr(config.spindle, key, value)
    return config


# ---------------------------------------------------------------------------
# In-process backends
# ---------------------------------------------------------------------------

def edit(files: dict[str, str], stdout: str = "done") -> Callable[[BackendRequest], BackendResult]:
    """A scripted agent turn that writes ``files`` into the worktree."""
    def step(request: BackendRequest) -> BackendResult:
        for rel, content in files.items():
            target = request.worktree_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return BackendResult(success=True, stdout=stdout, exit_code=0, duration_ms=5)
    return step


def fail(error: str = "agent crashed", timed_out: bool = False) -> Callable[[BackendRequest], BackendResult]:
    def step(request: BackendRequest) -> BackendResult:
        return BackendResult(success=False, error=error, exit_code=None if timed_out else 1, timed_out=timed_out)
    return step


class ScriptedBackend(ExecutionBackend):
    """Plays one scripted step per call, in order."""

    name = "scripted"

    def __init__(self, *steps: Callable[[BackendRequest], BackendResult]):
        self.steps = list(steps)
        self.requests: list[BackendRequest] = []

    def run(self, request: BackendRequest) -> BackendResult:
        self.requests.append(request)
        if not self.steps:
            raise AssertionError("ScriptedBackend called more times than scripted")
        return self.steps.pop(0)(request)


class MappedBackend(ExecutionBackend):
    """Writes per-ticket edits, keyed by worktree directory name. Safe across threads."""

    name = "mapped"

    def __init__(self, edits: dict[str, dict[str, str]]):
        self.edits = edits

    def run(self, request: BackendRequest) -> BackendResult:
        files = self.edits.get(request.worktree_path.name, {})
        return edit(files, stdout=f"edited {', '.join(files)}")(request)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()
