import json

import pytest

from ticketloom.artifacts import (
    ArtifactError,
    ArtifactType,
    artifact_path,
    read_json_artifact,
    write_json_artifact,
)
from ticketloom.scope import ScopeViolation, ViolationKind


def test_layout(tmp_path):
    path = artifact_path(tmp_path, ArtifactType.DIFFS, "T-1", timestamp=False)
    assert path == tmp_path / "artifacts" / "diffs" / "T-1.json"

    stamped = artifact_path(tmp_path, "runs", "T-1")
    assert stamped.parent == tmp_path / "artifacts" / "runs"
    assert stamped.name.startswith("T-1-")


def test_write_and_read_models_enums_and_sets(tmp_path):
    data = {
        "violations": [ScopeViolation(file="src/b.ts", violation=ViolationKind.IN_FORBIDDEN, pattern="src/b.ts")],
        "kind": ArtifactType.VIOLATIONS,
        "files": {"b", "a"},
        "where": tmp_path,
    }
    path = write_json_artifact(tmp_path, ArtifactType.VIOLATIONS, "T-1", data)

    loaded = read_json_artifact(path)
    assert loaded["violations"][0] == {"file": "src/b.ts", "violation": "in_forbidden", "pattern": "src/b.ts"}
    assert loaded["kind"] == "violations"
    assert loaded["files"] == ["a", "b"]
    assert loaded["where"] == str(tmp_path)
    # no temp files left behind
    assert [p.name for p in path.parent.iterdir()] == [path.name]


def test_failed_write_leaves_nothing(tmp_path):
    with pytest.raises(TypeError):
        write_json_artifact(tmp_path, ArtifactType.RUNS, "T-1", {"bad": object()})
    assert list((tmp_path / "artifacts" / "runs").iterdir()) == []


@pytest.mark.parametrize("bad_id", ["../escape", "a/b", "a\\b", ""])
def test_unsafe_ids_are_rejected(tmp_path, bad_id):
    with pytest.raises(ArtifactError):
        artifact_path(tmp_path, ArtifactType.RUNS, bad_id)


def test_overwrite_without_timestamp(tmp_path):
    write_json_artifact(tmp_path, "runs", "T-1", {"n": 1}, timestamp=False)
    path = write_json_artifact(tmp_path, "runs", "T-1", {"n": 2}, timestamp=False)
    assert json.loads(path.read_text()) == {"n": 2}
