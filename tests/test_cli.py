from typer.testing import CliRunner

from conftest import git
from ticketloom import __version__
from ticketloom.cli import app

runner = CliRunner()


def _write_tickets(directory, tickets: dict[str, str]):
    directory.mkdir(parents=True, exist_ok=True)
    for name, body in tickets.items():
        (directory / name).write_text(body)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"ticketloom v{__version__}" in result.stdout


def test_waves_preview(tmp_path):
    _write_tickets(tmp_path / ".ticketloom" / "tickets", {
        "t1.yaml": "id: T-1\ntitle: one\nallowed_paths: [src/a.ts]\n",
        "t2.yaml": "id: T-2\ntitle: two\nallowed_paths: [src/b.ts]\n",
        "t3.yaml": "id: T-3\ntitle: three\nallowed_paths: [src/a.ts]\ncomplexity: complex\n",
    })
    result = runner.invoke(app, ["waves", "--repo", str(tmp_path)])
    assert result.exit_code == 0, result.stdout
    assert "2 waves" in result.stdout


def test_init_bootstraps_the_repo(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0

    tl_dir = tmp_path / ".ticketloom"
    assert (tl_dir / "config.yaml").exists()
    assert (tl_dir / "tickets" / "example.yaml").exists()
    assert ".ticketloom/worktrees/" in (tmp_path / ".gitignore").read_text()

    # running it twice doesn't duplicate .gitignore entries
    runner.invoke(app, ["init", str(tmp_path)])
    assert (tmp_path / ".gitignore").read_text().count(".ticketloom/logs/") == 1


def test_batch_without_tickets_fails(tmp_path):
    (tmp_path / ".ticketloom" / "tickets").mkdir(parents=True)
    result = runner.invoke(app, ["batch", "--repo", str(tmp_path)])
    assert result.exit_code == 1
    assert "No ticket files found" in result.stdout


def test_run_one_ticket_end_to_end(git_repo, tmp_path):
    ticket = tmp_path / "ticket.yaml"
    ticket.write_text("id: T-7\ntitle: Set a to nine\nallowedPaths: [src/a.ts]\n")
    env = {"TICKETLOOM_BACKEND_COMMAND": "sh -c \"cat >/dev/null; echo 'export const a = 9;' > src/a.ts\""}

    result = runner.invoke(app, ["run", "--repo", str(git_repo), "--ticket", str(ticket)], env=env)

    assert result.exit_code == 0, result.stdout
    assert "Status: done" in result.stdout
    assert git(git_repo, "show", "ticketloom/T-7:src/a.ts") == "export const a = 9;"
    assert (git_repo / ".ticketloom" / "logs" / "events.jsonl").exists()
