import pytest

from ticketloom.config_loader import QACommand, QAConfig, QAConfigError
from ticketloom.qa import QAStatus, capture_qa_baseline, run_qa, truncate_tail
from ticketloom.qa_retry import extract_test_files, is_test_failure


def test_run_qa_stops_at_first_failure(tmp_path):
    commands = [
        QACommand(name="ok", cmd="echo fine"),
        QACommand(name="broken", cmd="echo 'type error' >&2; exit 2"),
        QACommand(name="never", cmd="touch ran.txt"),
    ]
    result = run_qa(commands, tmp_path)

    assert result.status == QAStatus.FAILED
    assert [r.name for r in result.results] == ["ok", "broken"]
    assert result.first_failure.name == "broken"
    assert result.first_failure.exit_code == 2
    assert result.first_failure.output_tail == "type error"
    assert not (tmp_path / "ran.txt").exists()


def test_run_qa_respects_cwd_and_timeout(tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "marker").write_text("")
    commands = [
        QACommand(name="in-pkg", cmd="test -f marker", cwd="pkg"),
        QACommand(name="slow", cmd="sleep 30", timeout_s=0.3),
    ]
    result = run_qa(commands, tmp_path, grace_s=0.2)

    assert result.results[0].passed
    assert result.results[1].timed_out
    assert result.results[1].output_tail.startswith("Timed out")


def test_baseline_runs_every_command(tmp_path):
    commands = [QACommand(name="red", cmd="exit 1"), QACommand(name="green", cmd="true")]
    baseline = capture_qa_baseline(commands, tmp_path)
    assert not baseline["red"].passed
    assert baseline["green"].passed


def test_truncate_tail():
    assert truncate_tail("short") == "short"
    text = "x" * 10 + "y" * 2000
    assert truncate_tail(text) == "y" * 2000 + "\n... (truncated)"


def test_qa_config_validation():
    with pytest.raises(QAConfigError, match="Duplicate"):
        QAConfig(commands=[QACommand(name="a", cmd="true"), QACommand(name="a", cmd="false")])
    with pytest.raises(QAConfigError, match="missing cmd"):
        QAConfig(commands=[QACommand(name="a", cmd="  ")])
    with pytest.raises(QAConfigError, match="missing a name"):
        QAConfig(commands=[QACommand(name="", cmd="true")])


@pytest.mark.parametrize("name,expected", [
    ("unit-tests", True),
    ("vitest", True),
    ("Jest", True),
    ("pytest", True),
    ("lint", False),
    ("typecheck", False),
])
def test_is_test_failure(name, expected):
    assert is_test_failure(name) is expected


def test_extract_test_files():
    output = "\n".join([
        "FAIL src/utils/format.test.ts > formats dates",
        "  at ./src/components/__tests__/Button.tsx:12:3",
        "FAILED tests/test_parser.py::test_empty - AssertionError",
        "--- FAIL: TestThing (0.00s) pkg/thing_test.go:14",
        "FAIL src/utils/format.test.ts again",
    ])
    assert extract_test_files(output) == [
        "src/utils/format.test.ts",
        "tests/test_parser.py",
        "pkg/thing_test.go",
        "src/components/__tests__/Button.tsx",
    ]
    assert extract_test_files("all good") == []


def test_failure_output_survives_undecodable_bytes(tmp_path):
    commands = [QACommand(name="unit-tests", cmd="printf 'FAILED tests/test_x.py \\377\\n'; exit 1")]
    result = run_qa(commands, tmp_path)

    failure = result.first_failure
    assert failure.output_tail.startswith("FAILED tests/test_x.py \ufffd")
    assert extract_test_files(failure.output_tail) == ["tests/test_x.py"]
