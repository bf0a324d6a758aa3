"""
Heuristics for the one-shot QA retry: is a failing command a test runner,
and which test files does its output point at.
"""

from __future__ import annotations

import re

_TEST_RUNNER = re.compile(r"test|vitest|jest|pytest|mocha|karma")

_TEST_FILE_PATTERNS = [
    re.compile(r"(?:FAIL|❌|✗)\s+([^\s]+\.(?:test|spec)\.[jt]sx?)", re.IGNORECASE),
    re.compile(r"([a-zA-Z0-9_/.\\-]+\.(?:test|spec)\.[jt]sx?)"),
    re.compile(r"([a-zA-Z0-9_/.\\-]*test_[a-zA-Z0-9_]+\.py)"),
    re.compile(r"([a-zA-Z0-9_/.\\-]+_test\.(?:py|go))"),
    re.compile(r"([a-zA-Z0-9_/.\\-]+/__tests__/[^\s:]+\.[jt]sx?)"),
]


def is_test_failure(command_name: str) -> bool:
    return bool(_TEST_RUNNER.search(command_name.lower()))


def extract_test_files(output: str) -> list[str]:
    """Candidate test file paths mentioned in ``output``, in first-seen order."""
    found: list[str] = []
    for pattern in _TEST_FILE_PATTERNS:
        for match in pattern.finditer(output):
            path = match.group(1).replace("\\", "/")
            while path.startswith("./"):
                path = path[2:]
            if path and path not in found:
                found.append(path)
    return found
