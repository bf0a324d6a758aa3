"""
CommandBackend — runs an agent CLI as a subprocess.

The prompt goes to the command's stdin and the command runs with the
worktree as its working directory. Output lines that are JSON objects are
timestamped on arrival and kept as trace events.
"""

from __future__ import annotations

import time

from loguru import logger

from ticketloom.backends import BackendRequest, BackendResult, ExecutionBackend
from ticketloom.process import run_command
from ticketloom.trace import TraceEvent, parse_trace_line


class CommandBackend(ExecutionBackend):
    name = "command"

    def __init__(self, command: list[str], env: dict[str, str] | None = None):
        if not command:
            raise ValueError("CommandBackend needs a command")
        self.command = list(command)
        self.env = env

    def run(self, request: BackendRequest) -> BackendResult:
        events: list[TraceEvent] = []
        channel = request.channel

        def on_line(line: str) -> None:
            event = parse_trace_line(line, timestamp=time.time())
            if event is not None:
                events.append(event)
                if channel and event.tool:
                    channel.progress(f"{event.kind}: {event.tool}")
            if channel:
                channel.raw_output(line)

        logger.info(f"[AGENT] {' '.join(self.command)} in {request.worktree_path}")
        res = run_command(
            self.command,
            cwd=request.worktree_path,
            timeout_s=request.timeout_s,
            input_text=request.prompt,
            env=self.env,
            grace_s=request.kill_grace_s,
            cancel_event=request.cancel_event,
            on_line=on_line,
        )

        error = None
        if res.timed_out:
            error = f"Timed out after {request.timeout_s:.0f}s"
        elif res.cancelled:
            error = "Cancelled"
        elif res.exit_code != 0:
            error = (res.stderr.strip() or f"exit code {res.exit_code}")[-1000:]

        stdout = res.stdout
        if events and any(e.text for e in events):
            stdout = "\n".join(e.text for e in events if e.text)

        return BackendResult(
            success=res.ok,
            stdout=stdout,
            stderr=res.stderr,
            exit_code=res.exit_code,
            timed_out=res.timed_out,
            duration_ms=res.duration_ms,
            error=error,
            trace_events=events,
        )
