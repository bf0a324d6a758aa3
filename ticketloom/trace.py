"""
Trace analysis for structured backend output.

A backend that emits one JSON event per line gets each event timestamped on
arrival. The runner uses the gaps between events as a liveness signal and
evaluates the configured trigger rules against the trace.
"""

from __future__ import annotations

import json
import re
import time
from collections import defaultdict
from typing import Any

from pydantic import BaseModel, Field

from ticketloom.config_loader import TriggerRule

STALL_GAP_MS = 30_000
IDLE_GAP_MS = 10_000


class TraceEvent(BaseModel):
    timestamp: float = Field(default_factory=time.time)
    kind: str = "message"
    tool: str | None = None
    text: str = ""
    is_error: bool = False
    input_tokens: int = 0
    output_tokens: int = 0


class StallPeriod(BaseModel):
    start: float
    end: float
    duration_ms: float


class Liveness(BaseModel):
    event_count: int = 0
    total_duration_ms: float = 0.0
    avg_gap_ms: float = 0.0
    max_gap_ms: float = 0.0
    stall_periods: list[StallPeriod] = Field(default_factory=list)
    idle_ratio: float = 0.0


class TriggerAlert(BaseModel):
    rule_id: str
    rule_name: str
    action: str
    message: str


class ToolProfile(BaseModel):
    tool: str
    call_count: int = 0
    error_count: int = 0


class TraceAnalysis(BaseModel):
    liveness: Liveness = Field(default_factory=Liveness)
    tool_profiles: list[ToolProfile] = Field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    alerts: list[TriggerAlert] = Field(default_factory=list)

    def abort_alert(self) -> TriggerAlert | None:
        return next((a for a in self.alerts if a.action == "abort"), None)


def parse_trace_line(line: str, timestamp: float | None = None) -> TraceEvent | None:
    """Turn one JSON line of backend output into a TraceEvent, or None."""
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        data: dict[str, Any] = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    message = data.get("message")
    usage = data.get("usage") or (message.get("usage") if isinstance(message, dict) else None) or {}
    if not isinstance(usage, dict):
        return None
    try:
        input_tokens = int(usage.get("input_tokens", 0) or 0)
        output_tokens = int(usage.get("output_tokens", 0) or 0)
    except (TypeError, ValueError):
        return None

    text = data.get("text") or data.get("result") or ""
    tool = data.get("tool") or data.get("name")
    return TraceEvent(
        timestamp=timestamp if timestamp is not None else time.time(),
        kind=str(data.get("type", "message")),
        tool=tool if isinstance(tool, str) else None,
        text=text if isinstance(text, str) else "",
        is_error=bool(data.get("is_error") or data.get("error")),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


def compute_liveness(events: list[TraceEvent]) -> Liveness:
    if len(events) <= 1:
        return Liveness(event_count=len(events))

    stamps = [e.timestamp for e in events]
    gaps = [(stamps[i] - stamps[i - 1]) * 1000.0 for i in range(1, len(stamps))]
    total = (stamps[-1] - stamps[0]) * 1000.0

    stalls = [
        StallPeriod(start=stamps[i], end=stamps[i + 1], duration_ms=gap)
        for i, gap in enumerate(gaps)
        if gap >= STALL_GAP_MS
    ]
    idle = sum(gap for gap in gaps if gap >= IDLE_GAP_MS)

    return Liveness(
        event_count=len(events),
        total_duration_ms=total,
        avg_gap_ms=round(sum(gaps) / len(gaps)),
        max_gap_ms=max(gaps),
        stall_periods=stalls,
        idle_ratio=min(1.0, idle / total) if total > 0 else 0.0,
    )


def _tool_profiles(events: list[TraceEvent]) -> list[ToolProfile]:
    calls: dict[str, int] = defaultdict(int)
    errors: dict[str, int] = defaultdict(int)
    for event in events:
        if not event.tool:
            continue
        calls[event.tool] += 1
        if event.is_error:
            errors[event.tool] += 1
    return [ToolProfile(tool=t, call_count=c, error_count=errors[t]) for t, c in calls.items()]


def evaluate_triggers(analysis: TraceAnalysis, rules: list[TriggerRule]) -> list[TriggerAlert]:
    alerts: list[TriggerAlert] = []
    for rule in rules:
        cond = rule.condition
        fired = False

        if cond.type == "stall_duration_ms":
            fired = analysis.liveness.max_gap_ms > cond.threshold
        elif cond.type == "token_threshold":
            fired = (analysis.total_input_tokens + analysis.total_output_tokens) > cond.threshold
        elif cond.type == "error_pattern" and cond.pattern:
            regex = re.compile(cond.pattern)
            fired = any(p.error_count > 0 and regex.search(p.tool) for p in analysis.tool_profiles)
        elif cond.type == "tool_error_rate":
            profile = next((p for p in analysis.tool_profiles if p.tool == cond.tool), None)
            if profile and profile.call_count > 0:
                fired = profile.error_count / profile.call_count > cond.threshold

        if fired:
            alerts.append(TriggerAlert(
                rule_id=rule.id,
                rule_name=rule.name,
                action=rule.action,
                message=rule.message or f"Trigger {rule.name} fired",
            ))
    return alerts


def analyze_trace(events: list[TraceEvent], rules: list[TriggerRule] | None = None) -> TraceAnalysis:
    # usage counters in streamed events are cumulative
    analysis = TraceAnalysis(
        liveness=compute_liveness(events),
        tool_profiles=_tool_profiles(events),
        total_input_tokens=max((e.input_tokens for e in events), default=0),
        total_output_tokens=max((e.output_tokens for e in events), default=0),
    )
    analysis.alerts = evaluate_triggers(analysis, rules or [])
    return analysis
