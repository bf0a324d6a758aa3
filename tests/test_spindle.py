import pytest
from pydantic import ValidationError

from ticketloom.config_loader import SpindleConfig
from ticketloom.spindle import LoopDetector, SpindleReason, SpindleResult, estimate_tokens
from ticketloom.spindle.patterns import command_signature, extract_files_from_diff
from ticketloom.spindle.report import format_spindle_result, spindle_recommendations
from ticketloom.spindle.state import FileEditCounter


def _diff(path: str, *lines: str) -> str:
    body = "\n".join(lines)
    return f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n@@ -1,1 +1,1 @@\n{body}\n"


WORDS = ["alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel"]


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("abcdefgh") == 2


def test_stalling_after_max_iterations_without_change():
    detector = LoopDetector(SpindleConfig(max_stall_iterations=5))
    for i in range(4):
        assert not detector.check(f"looking at {WORDS[i]}", "").triggered

    result = detector.check("looking at something else", "")
    assert result.should_abort
    assert result.reason == SpindleReason.STALLING
    assert result.confidence == 0.9
    assert result.diagnostics.iterations_without_change == 5


def test_a_diff_resets_the_stall_counter():
    detector = LoopDetector(SpindleConfig(max_stall_iterations=5))
    for i in range(4):
        detector.check(f"reading {WORDS[i]}", "")
    detector.check("made an edit", _diff("src/a.ts", "+export const a = 2;"))
    assert detector.state.iterations_since_change == 0

    for i in range(4):
        assert not detector.check(f"thinking about {WORDS[i + 4]}", "").triggered


def test_idle_gap_counts_as_stalled_iterations():
    detector = LoopDetector(SpindleConfig(max_stall_iterations=5))
    detector.note_idle_gap(59_000)
    assert detector.state.iterations_since_change == 0

    detector.note_idle_gap(120_000)
    assert detector.state.iterations_since_change == 4
    assert detector.check("still here", "").reason == SpindleReason.STALLING


def test_time_stall_uses_the_injected_clock():
    now = [1_000.0]
    detector = LoopDetector(SpindleConfig(max_stall_minutes=30), clock=lambda: now[0])
    detector.check("edit", _diff("src/a.ts", "+x = 1"))

    now[0] += 29 * 60
    assert not detector.check("waiting for the build", "").triggered

    now[0] += 2 * 60
    result = detector.check("still waiting for the build", "")
    assert result.reason == SpindleReason.TIME_STALL
    assert result.confidence == 0.95
    assert result.diagnostics.minutes_since_progress == 31.0
    assert result.diagnostics.max_stall_minutes == 30


def test_time_stall_disabled_with_zero_minutes():
    now = [0.0]
    detector = LoopDetector(SpindleConfig(max_stall_minutes=0), clock=lambda: now[0])
    now[0] += 10_000 * 60
    assert not detector.check("hello", "").triggered


def test_oscillation_added_then_removed():
    detector = LoopDetector()
    assert not detector.check("adding the helper", _diff("f.py", "+foo bar baz")).triggered

    result = detector.check("removing the helper", _diff("f.py", "-foo bar baz"))
    assert result.reason == SpindleReason.OSCILLATION
    assert result.should_abort
    assert result.confidence == 1.0
    assert result.diagnostics.oscillation_pattern.startswith("Added then removed")


def test_oscillation_same_content_in_iterations_one_and_three():
    detector = LoopDetector()
    detector.check("first", _diff("f.py", "+return compute_total(items)"))
    detector.check("second", _diff("g.py", "+import os"))
    result = detector.check("third", _diff("f.py", "+return compute_total(items)"))
    assert result.reason == SpindleReason.OSCILLATION
    assert "iterations 1 and 3" in result.diagnostics.oscillation_pattern


def test_unrelated_diffs_never_oscillate():
    detector = LoopDetector()
    diffs = [
        _diff("src/a.ts", "+export const alpha = bravo();", "-const old = charlie;"),
        _diff("src/b.ts", "+import { delta } from './echo';", "-// foxtrot golf"),
        _diff("src/c.ts", "+hotel.india(juliet, kilo);", "-lima.mike = november;"),
        _diff("src/a.ts", "+oscar papa quebec", "-romeo sierra tango"),
    ]
    for i, diff in enumerate(diffs):
        result = detector.check(f"step {WORDS[i]} of the plan", diff)
        assert result.reason != SpindleReason.OSCILLATION
        assert not result.should_abort


def test_repetition_of_identical_long_outputs():
    detector = LoopDetector()
    output = "I am going to refactor the parser module now. Running the full test suite to check."
    assert not detector.check(output, "").triggered

    result = detector.check(output, "")
    assert result.reason == SpindleReason.REPETITION
    assert result.diagnostics.similarity_score == 1.0
    assert result.diagnostics.repeated_patterns


def test_short_identical_outputs_are_not_repetition():
    detector = LoopDetector()
    detector.check("ok", "")
    assert not detector.check("ok", "").triggered


def test_stuck_phrase_repetition():
    detector = LoopDetector()
    detector.check("Let me try the alpha approach", "")
    detector.check("let me try something with bravo", "")
    result = detector.check("Let me try charlie instead", "")
    assert result.reason == SpindleReason.REPETITION
    assert result.confidence == 0.85
    assert 'Repeated phrase: "let me try" (3 times)' in result.diagnostics.repeated_patterns


def test_token_budget_warning_then_abort():
    detector = LoopDetector(SpindleConfig(token_budget_warning=10, token_budget_abort=100))
    assert not detector.check("x" * 200, "").triggered
    assert any("Approaching token budget" in w for w in detector.drain_warnings())
    assert detector.drain_warnings() == []

    result = detector.check("y" * 300, "")
    assert result.reason == SpindleReason.TOKEN_BUDGET
    assert result.confidence == 1.0
    assert result.diagnostics.estimated_tokens == 125


def test_repeated_command_failure_blocks():
    detector = LoopDetector()
    signatures = {detector.record_command_failure("npm test", "Error: ECONNREFUSED 127.0.0.1:5432") for _ in range(3)}
    assert len(signatures) == 1

    result = detector.check("working on it", _diff("src/x.ts", "+const x = 1;"))
    assert result.should_block
    assert not result.should_abort
    assert result.reason == SpindleReason.COMMAND_FAILURE
    assert result.confidence == 0.8
    assert result.diagnostics.command_signature == signatures.pop()


def test_qa_ping_pong_aborts_before_command_failure():
    detector = LoopDetector(SpindleConfig(max_qa_ping_pong=3))
    for _ in range(3):
        detector.record_command_failure("lint", "unused import")
        detector.record_command_failure("test", "expected 2 got 1")

    result = detector.check("trying a fix", _diff("src/x.ts", "+const y = 2;"))
    assert result.reason == SpindleReason.QA_PING_PONG
    assert result.should_abort
    assert result.confidence == 0.9
    assert "3 cycles" in result.diagnostics.ping_pong_pattern


def test_file_churn_is_a_warning_only():
    detector = LoopDetector(SpindleConfig(max_file_edits=3))
    detector.check("one", _diff("f.py", "+line one alpha"))
    detector.check("two", _diff("f.py", "+line two bravo"))
    result = detector.check("three", _diff("f.py", "+line three charlie"))

    assert not result.triggered
    assert result.diagnostics.file_edit_warnings == ["File churn: f.py edited 3 times"]
    assert "File churn: f.py edited 3 times" in detector.drain_warnings()


def test_file_edit_counts_are_capped():
    counter = FileEditCounter(cap=200)
    counter.bump("hot.py")
    counter.bump("hot.py")
    for i in range(300):
        counter.bump(f"file_{i}.py")
    assert len(counter) == 200
    assert counter.get("hot.py") == 2

    detector = LoopDetector()
    huge = "".join(f"+++ b/pkg/mod_{i}.py\n+x = {i}\n" for i in range(300))
    detector.check("big sweep", huge)
    assert len(detector.state.file_edit_counts) <= 200


def test_state_rings_are_bounded():
    detector = LoopDetector(SpindleConfig(max_similar_outputs=3, max_stall_iterations=1000))
    for i in range(10):
        detector.check(f"output number {i}", _diff(f"f{i}.py", f"+value_{i} = {i}"))
        detector.record_command_failure(f"cmd {i}", "boom")
    state = detector.state
    assert len(state.outputs) == 4
    assert len(state.diffs) == 5
    assert len(state.failing_commands) == 10


def test_disabled_detector_never_triggers():
    detector = LoopDetector(SpindleConfig(enabled=False))
    for _ in range(3):
        detector.record_command_failure("npm test", "boom")
    for _ in range(10):
        assert not detector.check("same", "").triggered


def test_result_cannot_abort_and_block():
    with pytest.raises(ValidationError):
        SpindleResult(should_abort=True, should_block=True, reason=SpindleReason.STALLING)
    with pytest.raises(ValidationError):
        SpindleResult(should_abort=True)


def test_command_signature_is_stable_and_truncates_errors():
    base = "x" * 200
    assert command_signature("npm test", base + "tail one") == command_signature("npm test", base + "tail two")
    assert command_signature("npm test", "a") != command_signature("npm run lint", "a")
    assert len(command_signature("npm test", "a")) == 12


def test_extract_files_from_diff():
    diff = _diff("src/a.ts", "+x") + _diff("src/b.ts", "-y") + _diff("src/a.ts", "+z")
    assert extract_files_from_diff(diff) == ["src/a.ts", "src/b.ts"]


def test_format_and_recommendations():
    assert format_spindle_result(SpindleResult()) == "Spindle: no loop detected"

    detector = LoopDetector()
    for _ in range(3):
        detector.record_command_failure("npm test", "boom")
    blocked = detector.check("hmm", "")
    text = format_spindle_result(blocked)
    assert text.startswith("Spindle blocked (needs human): command_failure")
    assert "Command signature:" in text

    for reason in SpindleReason:
        result = SpindleResult(should_abort=True, reason=reason, confidence=0.5)
        assert spindle_recommendations(result)
        assert format_spindle_result(result).startswith(f"Spindle loop detected: {reason.value}")
