"""
Ticket scope enforcement.

Allowed and forbidden paths are glob-like patterns evaluated against
repo-relative paths. Forbidden always wins; an empty allowed list means
"anything not forbidden".
"""

from __future__ import annotations

import re
from collections import defaultdict
from enum import Enum
from functools import lru_cache
from pathlib import PurePosixPath

from pydantic import BaseModel


class ScopeError(Exception):
    pass


class ViolationKind(str, Enum):
    NOT_IN_ALLOWED = "not_in_allowed"
    IN_FORBIDDEN = "in_forbidden"


class ScopeViolation(BaseModel):
    file: str
    violation: ViolationKind
    pattern: str | None = None

    def describe(self) -> str:
        if self.violation == ViolationKind.IN_FORBIDDEN:
            return f"{self.file} (matches forbidden {self.pattern})"
        if self.pattern:
            return f"{self.file} ({self.pattern})"
        return f"{self.file} (outside allowed paths)"


_PORCELAIN = re.compile(r"^..\s+(.+?)(?:\s+->\s+(.+))?$")


# ---------------------------------------------------------------------------
# Paths and patterns
# ---------------------------------------------------------------------------

def normalize_path(path: str) -> str:
    p = path.replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    p = re.sub(r"/{2,}", "/", p)
    return p.rstrip("/")


@lru_cache(maxsize=512)
def _glob_regex(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def matches_pattern(path: str, pattern: str) -> bool:
    """True if ``path`` matches the glob ``pattern`` or lives below it."""
    path = normalize_path(path)
    pattern = normalize_path(pattern)
    if not pattern:
        return False
    if _glob_regex(pattern).match(path):
        return True
    # plain directory patterns cover their subtree
    if not any(ch in pattern for ch in "*?"):
        return path.startswith(pattern + "/")
    return False


def detect_hallucinated_path(path: str) -> str | None:
    """Reason the path looks invented by the agent, or None."""
    if "//" in path.replace("\\", "/"):
        return "double slash in path"
    segments = [s for s in normalize_path(path).split("/") if s]
    for prev, curr in zip(segments, segments[1:]):
        if prev == curr:
            return f"repeated segment '{curr}'"
    return None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def check_scope_violations(
    changed_files: list[str],
    allowed_paths: list[str],
    forbidden_paths: list[str],
) -> list[ScopeViolation]:
    violations: list[ScopeViolation] = []

    for raw in changed_files:
        hallucinated = detect_hallucinated_path(raw)
        path = normalize_path(raw)
        if hallucinated:
            violations.append(ScopeViolation(
                file=path,
                violation=ViolationKind.NOT_IN_ALLOWED,
                pattern=f"hallucinated: {hallucinated}",
            ))
            continue

        forbidden = next((p for p in forbidden_paths if matches_pattern(path, p)), None)
        if forbidden is not None:
            violations.append(ScopeViolation(file=path, violation=ViolationKind.IN_FORBIDDEN, pattern=forbidden))
            continue

        if allowed_paths and not _is_allowed(raw, path, allowed_paths):
            violations.append(ScopeViolation(file=path, violation=ViolationKind.NOT_IN_ALLOWED))

    return violations


def _is_allowed(raw: str, path: str, allowed_paths: list[str]) -> bool:
    if any(matches_pattern(path, p) for p in allowed_paths):
        return True
    # an untracked directory entry passes when something inside it is allowed
    if raw.endswith("/"):
        return any(normalize_path(p).startswith(path + "/") for p in allowed_paths)
    return False


def parse_changed_files(porcelain: str) -> list[str]:
    """File paths from ``git status --porcelain`` output (rename targets)."""
    files: list[str] = []
    for line in porcelain.splitlines():
        if not line.strip():
            continue
        match = _PORCELAIN.match(line)
        if not match:
            continue
        path = (match.group(2) or match.group(1)).strip().strip('"')
        files.append(path)
    return files


def analyze_violations_for_expansion(
    violations: list[ScopeViolation],
    allowed_paths: list[str],
    max_expansions: int = 5,
) -> list[str]:
    """
    Suggest allowed-path additions for violations that look like collateral
    edits: files that share a directory with an allowed path. Forbidden hits
    are never suggested.
    """
    allowed_dirs = {
        str(PurePosixPath(normalize_path(p)).parent)
        for p in allowed_paths
        if not any(ch in p for ch in "*?")
    }
    by_dir: dict[str, list[str]] = defaultdict(list)
    for v in violations:
        if v.violation != ViolationKind.NOT_IN_ALLOWED or (v.pattern or "").startswith("hallucinated"):
            continue
        by_dir[str(PurePosixPath(v.file).parent)].append(v.file)

    suggestions: list[str] = []
    for directory, files in by_dir.items():
        if directory in allowed_dirs:
            suggestions.extend(files)
    return sorted(set(suggestions))[:max_expansions]
