"""
Time-bounded, cancellable subprocess execution.

Commands run in their own session so a timeout or cancellation can signal
the whole process group: SIGTERM first, SIGKILL once the grace period runs
out.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from loguru import logger

POLL_INTERVAL_S = 0.05
DEFAULT_GRACE_S = 1.5


@dataclass
class CommandResult:
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


def _pump(stream, sink: list[str], on_line: Callable[[str], None] | None) -> None:
    for line in iter(stream.readline, ""):
        sink.append(line)
        if on_line is not None:
            try:
                on_line(line)
            except Exception as e:
                logger.warning(f"[PROCESS] Output consumer failed: {e}")
    stream.close()


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def terminate(proc: subprocess.Popen, grace_s: float = DEFAULT_GRACE_S) -> None:
    """SIGTERM the process group, then SIGKILL after ``grace_s``."""
    if proc.poll() is not None:
        return
    _signal_group(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace_s)
    except subprocess.TimeoutExpired:
        logger.debug(f"[PROCESS] pid {proc.pid} ignored SIGTERM, sending SIGKILL")
        _signal_group(proc, signal.SIGKILL)
        proc.wait()


def run_command(
    cmd: Sequence[str],
    cwd: Path,
    timeout_s: float | None,
    *,
    input_text: str | None = None,
    env: dict[str, str] | None = None,
    grace_s: float = DEFAULT_GRACE_S,
    cancel_event: threading.Event | None = None,
    on_line: Callable[[str], None] | None = None,
) -> CommandResult:
    start = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(cmd),
            cwd=cwd,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            env={**os.environ, **env} if env else None,
            start_new_session=True,
        )
    except OSError as e:
        return CommandResult(
            exit_code=None,
            stdout="",
            stderr=str(e),
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    out: list[str] = []
    err: list[str] = []
    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, out, on_line), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, err, None), daemon=True),
    ]
    for reader in readers:
        reader.start()

    if input_text is not None:
        try:
            proc.stdin.write(input_text)
            proc.stdin.close()
        except BrokenPipeError:
            pass

    timed_out = cancelled = False
    deadline = start + timeout_s if timeout_s else None
    while proc.poll() is None:
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            break
        if deadline is not None and time.monotonic() >= deadline:
            timed_out = True
            break
        time.sleep(POLL_INTERVAL_S)

    if timed_out or cancelled:
        logger.warning(
            f"[PROCESS] {'Timed out' if timed_out else 'Cancelled'}: {' '.join(cmd)[:80]} (pid {proc.pid})"
        )
        terminate(proc, grace_s)

    for reader in readers:
        reader.join(timeout=5)

    return CommandResult(
        exit_code=proc.returncode,
        stdout="".join(out),
        stderr="".join(err),
        timed_out=timed_out,
        cancelled=cancelled,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
