"""
JSON run artifacts: execution logs, diffs, violation reports, Spindle
snapshots, traces and run summaries.

Layout: ``<base>/artifacts/<type>/<id>[-<timestamp>].json``. Files are
written to a temporary sibling and renamed into place.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel


class ArtifactError(Exception):
    pass


class ArtifactType(str, Enum):
    EXECUTIONS = "executions"
    DIFFS = "diffs"
    RUNS = "runs"
    VIOLATIONS = "violations"
    SPINDLE = "spindle"
    TRACES = "traces"


def _safe_segment(value: str, what: str) -> str:
    if not value or any(bad in value for bad in ("/", "\\", "\0")) or ".." in value:
        raise ArtifactError(f"Unsafe artifact {what}: {value!r}")
    return value


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (Path, set, frozenset)):
        return str(obj) if isinstance(obj, Path) else sorted(obj)
    raise TypeError(f"Not JSON serializable: {type(obj).__name__}")


def artifact_path(
    base_dir: Path,
    artifact_type: ArtifactType | str,
    artifact_id: str,
    timestamp: bool = True,
) -> Path:
    type_name = artifact_type.value if isinstance(artifact_type, ArtifactType) else artifact_type
    _safe_segment(type_name, "type")
    _safe_segment(artifact_id, "id")
    name = f"{artifact_id}-{int(time.time() * 1000)}" if timestamp else artifact_id
    return base_dir / "artifacts" / type_name / f"{name}.json"


def write_json_artifact(
    base_dir: Path,
    artifact_type: ArtifactType | str,
    artifact_id: str,
    data: Any,
    timestamp: bool = True,
) -> Path:
    path = artifact_path(base_dir, artifact_type, artifact_id, timestamp)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2, default=_default)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return path


def read_json_artifact(path: Path) -> Any:
    with open(path) as f:
        return json.load(f)
