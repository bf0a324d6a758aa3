import pytest

from ticketloom.config_loader import QAConfigError, SpindleConfig, load_config


def test_defaults():
    config = load_config()
    assert config.execution.command == ["claude", "-p"]
    assert config.spindle == SpindleConfig()
    assert config.scheduler.min_parallel == 2
    assert config.scheduler.max_parallel == 5
    assert config.qa.commands == []


def test_repo_overrides_merge_with_defaults(tmp_path):
    (tmp_path / ".ticketloom").mkdir()
    (tmp_path / ".ticketloom" / "config.yaml").write_text(
        "spindle:\n"
        "  max_stall_iterations: 2\n"
        "qa:\n"
        "  commands:\n"
        "    - name: unit-tests\n"
        "      cmd: pytest -q\n"
    )
    config = load_config(tmp_path)
    assert config.spindle.max_stall_iterations == 2
    assert config.spindle.token_budget_abort == 140_000
    assert config.qa.commands[0].name == "unit-tests"
    assert config.qa.commands[0].timeout_s == 600


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("TICKETLOOM_BACKEND_COMMAND", "my-agent --print --model 'big one'")
    monkeypatch.setenv("TICKETLOOM_TIMEOUT_S", "42")
    config = load_config(tmp_path)
    assert config.execution.command == ["my-agent", "--print", "--model", "big one"]
    assert config.execution.timeout_s == 42.0


def test_invalid_qa_config(tmp_path):
    (tmp_path / ".ticketloom").mkdir()
    (tmp_path / ".ticketloom" / "config.yaml").write_text(
        "qa:\n  commands:\n    - {name: lint, cmd: ruff}\n    - {name: lint, cmd: eslint}\n"
    )
    with pytest.raises(QAConfigError):
        load_config(tmp_path)
