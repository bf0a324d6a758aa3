"""
Ticket definition — one proposed, independently executable code change
with a declared file scope.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Complexity(str, Enum):
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @property
    def heavy(self) -> bool:
        return self in (Complexity.MODERATE, Complexity.COMPLEX)


class TicketStatus(str, Enum):
    READY = "ready"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    FAILED = "failed"


class Ticket(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    description: str = ""
    category: str = "refactor"
    allowed_paths: list[str] = Field(default_factory=list, alias="allowedPaths")
    forbidden_paths: list[str] = Field(default_factory=list, alias="forbiddenPaths")
    files: list[str] = Field(default_factory=list)
    complexity: Complexity = Complexity.SIMPLE
    confidence: int | None = Field(default=None, ge=0, le=100)
    verification_commands: list[str] = Field(default_factory=list)
    status: TicketStatus = TicketStatus.READY
    file_path: Path | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _default_file_set(self) -> "Ticket":
        if not self.files:
            self.files = list(self.allowed_paths)
        return self

    def with_allowed_paths(self, extra: list[str]) -> "Ticket":
        """Copy of this ticket with ``extra`` appended to its allowed paths."""
        merged = list(dict.fromkeys([*self.allowed_paths, *extra]))
        return self.model_copy(update={"allowed_paths": merged})

    @classmethod
    def from_yaml(cls, path: Path) -> "Ticket":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        data.setdefault("id", path.stem)
        data.setdefault("title", data["id"])
        data["file_path"] = path
        return cls(**data)


def load_tickets(directory: Path) -> list[Ticket]:
    """Every ``*.yaml``/``*.yml`` ticket in ``directory``, sorted by file name."""
    files = sorted(directory.glob("*.yaml")) + sorted(directory.glob("*.yml"))
    return [Ticket.from_yaml(f) for f in files if "example" not in f.name.lower()]
