"""
ticketloom Workspace Isolation

Transactional sandboxing. Every ticket gets its own 'git worktree' on its
own branch. Git-mutating operations (worktree add/remove, branch
create/delete, fetch) are serialized behind one mutex owned by the
WorkspaceManager; everything that happens inside a worktree afterwards runs
unlocked.
"""

from __future__ import annotations

import hashlib
import re
import shutil
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ticketloom.config_loader import LoomConfig
from ticketloom.process import run_command
from ticketloom.qa import QABaselineEntry, capture_qa_baseline
from ticketloom.scope import parse_changed_files
from ticketloom.workspace.exclusion import write_exclusion_index


class WorkspaceError(Exception):
    pass


class FetchError(WorkspaceError):
    pass


@dataclass
class Workspace:
    """An isolated worktree bound to one ticket branch."""
    ticket_id: str
    path: Path
    branch_name: str
    base_branch: str
    baseline_files: frozenset[str] = field(default_factory=frozenset)
    qa_baseline: dict[str, QABaselineEntry] = field(default_factory=dict)
    excluded_patterns: list[str] = field(default_factory=list)

    def preexisting_failures(self) -> set[str]:
        return {name for name, entry in self.qa_baseline.items() if not entry.passed}


def ticket_slug(value: str) -> str:
    """
    Filesystem- and ref-safe form of a ticket id.

    Ids that need sanitising get a short hash of the raw id appended, so
    ``a/b`` and ``a-b`` never share a worktree or a branch.
    """
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-")
    if slug == value:
        return slug
    digest = hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]
    return f"{slug}-{digest}" if slug else f"ticket-{digest}"


class WorkspaceManager:
    """
    Creates and destroys ticket worktrees under ``<repo>/<worktree_dir>``.

    One manager should be shared by every ticket of a batch so that all of
    them contend for the same git mutex.
    """

    def __init__(self, repo_path: Path, config: LoomConfig | None = None):
        self.repo_path = repo_path.resolve()
        self.config = config or LoomConfig()
        self.worktree_root = self.repo_path / self.config.workspace.worktree_dir
        self._git_lock = threading.Lock()

    @contextmanager
    def git_mutex(self) -> Iterator[None]:
        with self._git_lock:
            yield

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def create_workspace(
        self,
        branch_name: str,
        base_branch: str | None = None,
        ticket_id: str | None = None,
    ) -> Workspace:
        """
        Provision a fresh worktree for ``branch_name``.

        Safe to call again for a retried ticket: any prior worktree or branch
        with the same name is removed first.
        """
        ticket_id = ticket_id or branch_name.rsplit("/", 1)[-1]
        path = self.worktree_root / ticket_slug(ticket_id)
        override = base_branch or self.config.workspace.base_branch

        with self.git_mutex():
            self._git("worktree", "prune", check=False)
            self._remove_worktree(path, branch_name)

            base, start_point = self._resolve_base(override)
            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._git("branch", branch_name, start_point)
                self._git("worktree", "add", str(path), branch_name)
            except WorkspaceError:
                self._remove_worktree(path, branch_name)
                raise
            logger.info(f"[WORKSPACE] Sandbox created: {path} ({branch_name} from {start_point})")

            excluded = write_exclusion_index(path, self.config.workspace.exclusion_max_depth)

        ws = Workspace(
            ticket_id=ticket_id,
            path=path,
            branch_name=branch_name,
            base_branch=base,
            excluded_patterns=excluded,
        )
        try:
            self._run_setup(ws)
            ws.baseline_files = frozenset(self.status_files(ws))

            qa = self.config.qa
            if qa.commands and qa.capture_baseline:
                ws.qa_baseline = capture_qa_baseline(
                    qa.commands,
                    ws.path,
                    grace_s=self.config.execution.kill_grace_s,
                    tail_chars=qa.output_tail_chars,
                )
        except WorkspaceError:
            # never returned, so nothing else would remove it
            self.destroy_workspace(ws, delete_branch=True)
            raise
        return ws

    def destroy_workspace(self, ws: Workspace, delete_branch: bool = False) -> None:
        """
        Best-effort removal of the worktree and its directory. Never raises.

        The branch survives unless ``delete_branch`` is set; it carries the
        ticket's commits.
        """
        try:
            with self.git_mutex():
                self._remove_worktree(ws.path, ws.branch_name if delete_branch else None)
                self._git("worktree", "prune", check=False)
            logger.info(f"[WORKSPACE] Cleanup complete: {ws.ticket_id}")
        except Exception as e:
            logger.warning(f"[WORKSPACE] Cleanup of {ws.path} incomplete: {e}")

    # -----------------------------------------------------------------------
    # Inspection
    # -----------------------------------------------------------------------

    def status_files(self, ws: Workspace) -> list[str]:
        porcelain = self._worktree_git(ws, "status", "--porcelain", "--untracked-files=all", capture=True)
        return parse_changed_files(porcelain)

    def changed_files(self, ws: Workspace) -> list[str]:
        """Files changed since the baseline snapshot."""
        return [f for f in self.status_files(ws) if f not in ws.baseline_files]

    def diff(self, ws: Workspace) -> str:
        """Unified diff of all changes (tracked and untracked) against HEAD."""
        self._worktree_git(ws, "add", "--intent-to-add", ".", check=False)
        return self._worktree_git(ws, "diff", "HEAD", capture=True, check=False)

    def commit(self, ws: Workspace, message: str) -> str | None:
        """Stage and commit everything in the worktree. None if nothing changed."""
        self._worktree_git(ws, "add", "-A")
        if not self._worktree_git(ws, "status", "--porcelain", capture=True).strip():
            logger.info("[WORKSPACE] Nothing to commit.")
            return None
        self._worktree_git(ws, "commit", "-m", message)
        return self._worktree_git(ws, "rev-parse", "HEAD", capture=True).strip()

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _remove_worktree(self, path: Path, branch_name: str | None) -> None:
        self._git("worktree", "remove", "--force", str(path), check=False)
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
        self._git("worktree", "prune", check=False)
        if branch_name:
            self._git("branch", "-D", branch_name, check=False)

    def _has_origin(self) -> bool:
        remotes = self._git("remote", capture=True, check=False)
        return "origin" in remotes.split()

    def _resolve_base(self, override: str | None) -> tuple[str, str]:
        """Return (base branch name, start point for the new branch)."""
        if override:
            if self._has_origin():
                self._fetch_quietly(override)
            return override, override

        if not self._has_origin():
            current = self._git("rev-parse", "--abbrev-ref", "HEAD", capture=True, check=False).strip()
            base = current if current and current != "HEAD" else "HEAD"
            return base, base

        ref = self._git("symbolic-ref", "refs/remotes/origin/HEAD", capture=True, check=False).strip()
        base = ref.removeprefix("refs/remotes/origin/") if ref else "master"
        self._fetch_quietly(base)
        return base, f"origin/{base}"

    def _fetch_quietly(self, base: str) -> None:
        try:
            self._fetch(base)
        except WorkspaceError as e:
            logger.warning(f"[WORKSPACE] Fetch of {base} failed, using local refs: {e}")

    @retry(
        retry=retry_if_exception_type(FetchError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        reraise=True,
    )
    def _fetch(self, base: str) -> None:
        try:
            self._git("fetch", "origin", base)
        except WorkspaceError as e:
            raise FetchError(str(e)) from e

    def _run_setup(self, ws: Workspace) -> None:
        setup = self.config.workspace.setup_command
        if not setup:
            return
        logger.info(f"[WORKSPACE] Running setup: {setup}")
        res = run_command(
            ["sh", "-c", setup],
            cwd=ws.path,
            timeout_s=self.config.workspace.setup_timeout_s,
            grace_s=self.config.execution.kill_grace_s,
        )
        if not res.ok:
            logger.warning(f"[WORKSPACE] Setup failed (continuing): {(res.stderr or res.stdout)[-300:]}")

    def _git(self, *args: str, check: bool = True, capture: bool = False) -> str:
        return self._run_cmd(["git", *args], cwd=self.repo_path, check=check, capture=capture,
                             timeout=self.config.workspace.git_timeout_s)

    def _worktree_git(self, ws: Workspace, *args: str, check: bool = True, capture: bool = False) -> str:
        return self._run_cmd(["git", *args], cwd=ws.path, check=check, capture=capture,
                             timeout=self.config.workspace.git_timeout_s)

    @staticmethod
    def _run_cmd(cmd: list[str], cwd: Path, check: bool = True, capture: bool = False,
                 timeout: float = 60) -> str:
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True,
                                    encoding="utf-8", errors="replace", timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            if check:
                raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{e}") from e
            return ""
        if check and result.returncode != 0:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{result.stderr}")
        return result.stdout if capture else ""
