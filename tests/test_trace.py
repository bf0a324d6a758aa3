import pytest

from ticketloom.backends import BackendRequest
from ticketloom.backends.command import CommandBackend
from ticketloom.config_loader import TriggerCondition, TriggerRule
from ticketloom.event_bus import EventBus, ProgressChannel
from ticketloom.trace import TraceEvent, analyze_trace, compute_liveness, parse_trace_line


def _rule(action: str = "warn", **condition) -> TriggerRule:
    return TriggerRule(id="r1", name="rule one", condition=TriggerCondition(**condition), action=action)


def test_parse_trace_line():
    event = parse_trace_line(
        '{"type": "tool_use", "name": "Edit", "usage": {"input_tokens": 10, "output_tokens": 3}}',
        timestamp=5.0,
    )
    assert event.kind == "tool_use"
    assert event.tool == "Edit"
    assert event.timestamp == 5.0
    assert (event.input_tokens, event.output_tokens) == (10, 3)

    assert parse_trace_line("plain text output") is None
    assert parse_trace_line("{not json") is None
    assert parse_trace_line('{"type": "result", "result": "all done"}').text == "all done"


def test_parse_trace_line_nested_usage():
    event = parse_trace_line('{"type": "assistant", "message": {"usage": {"input_tokens": 7}}}')
    assert event.input_tokens == 7
    assert event.output_tokens == 0

    event = parse_trace_line('{"type": "assistant", "message": "plain string message", "name": 3}')
    assert (event.input_tokens, event.output_tokens) == (0, 0)
    assert event.tool is None


@pytest.mark.parametrize("line", [
    '{"type": "assistant", "usage": [1, 2]}',
    '{"type": "assistant", "usage": {"input_tokens": "lots"}}',
    '{"type": "assistant", "usage": {"output_tokens": {"n": 1}}}',
])
def test_parse_trace_line_rejects_malformed_usage(line):
    assert parse_trace_line(line) is None


def test_malformed_lines_still_reach_raw_output(tmp_path):
    script = (
        "cat > /dev/null; "
        """echo '{"type": "assistant", "usage": {"input_tokens": "lots"}}'; """
        """echo '{"type": "tool_use", "name": "Edit"}'"""
    )
    events_bus = EventBus()
    raw = []
    events_bus.subscribe(lambda e: raw.append(e.payload["chunk"]) if e.event_type == "raw_output" else None)
    request = BackendRequest(
        worktree_path=tmp_path,
        prompt="go",
        timeout_s=10,
        channel=ProgressChannel(events_bus, "T-1"),
    )

    result = CommandBackend(["sh", "-c", script]).run(request)

    assert result.success
    assert [line.strip() for line in raw] == [
        '{"type": "assistant", "usage": {"input_tokens": "lots"}}',
        '{"type": "tool_use", "name": "Edit"}',
    ]
    assert [e.tool for e in result.trace_events] == ["Edit"]


def test_liveness_gaps_and_stalls():
    events = [TraceEvent(timestamp=t) for t in (0.0, 1.0, 41.0, 42.0)]
    liveness = compute_liveness(events)
    assert liveness.event_count == 4
    assert liveness.total_duration_ms == 42_000
    assert liveness.max_gap_ms == 40_000
    assert len(liveness.stall_periods) == 1
    assert liveness.stall_periods[0].start == 1.0
    assert round(liveness.idle_ratio, 3) == round(40 / 42, 3)

    assert compute_liveness([TraceEvent()]).max_gap_ms == 0


def test_triggers():
    events = [
        TraceEvent(timestamp=0.0, tool="Bash", is_error=True),
        TraceEvent(timestamp=1.0, tool="Bash"),
        TraceEvent(timestamp=100.0, tool="Edit", input_tokens=5_000, output_tokens=1_000),
    ]
    rules = [
        _rule(type="stall_duration_ms", threshold=60_000),
        _rule(type="token_threshold", threshold=10_000),
        _rule("abort", type="error_pattern", pattern="^Ba"),
        _rule("log", type="tool_error_rate", tool="Bash", threshold=0.4),
    ]
    analysis = analyze_trace(events, rules)

    assert [a.action for a in analysis.alerts] == ["warn", "abort", "log"]
    assert analysis.abort_alert().message == "Trigger rule one fired"
    assert analysis.total_input_tokens == 5_000
    profiles = {p.tool: (p.call_count, p.error_count) for p in analysis.tool_profiles}
    assert profiles == {"Bash": (2, 1), "Edit": (1, 0)}


def test_no_rules_no_alerts():
    assert analyze_trace([TraceEvent(), TraceEvent()]).alerts == []
