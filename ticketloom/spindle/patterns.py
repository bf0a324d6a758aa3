"""
Pattern checks over Spindle state: oscillating diffs, repeated outputs,
alternating failures and repeated command failures.
"""

from __future__ import annotations

import hashlib
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Sequence

from ticketloom.spindle.similarity import find_repeated_phrases, similarity

STUCK_PHRASES = (
    "let me try",
    "i apologize",
    "i'll try again",
    "let me attempt",
    "trying again",
    "one more time",
    "another approach",
)

MIN_LINE_CHARS = 3
PREVIEW_CHARS = 50
ERROR_SIGNATURE_CHARS = 200
MAX_PATTERNS = 5

_DIFF_FILE_HEADER = re.compile(r"^\+\+\+ b/(.+)$", re.MULTILINE)


@dataclass
class PatternMatch:
    detected: bool = False
    confidence: float = 0.0
    pattern: str | None = None
    patterns: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Diff parsing
# ---------------------------------------------------------------------------

def extract_files_from_diff(diff: str) -> list[str]:
    """Paths named by ``+++ b/<path>`` headers, in order of appearance."""
    seen: list[str] = []
    for match in _DIFF_FILE_HEADER.finditer(diff):
        path = match.group(1).strip()
        if path and path not in seen:
            seen.append(path)
    return seen


def split_diff_lines(diff: str) -> tuple[list[str], list[str]]:
    """Return (added, removed) content lines, headers and hunk markers excluded."""
    added: list[str] = []
    removed: list[str] = []
    for line in diff.splitlines():
        if line.startswith(("+++", "---", "@@")):
            continue
        if line.startswith("+"):
            added.append(line[1:].strip())
        elif line.startswith("-"):
            removed.append(line[1:].strip())
    return added, removed


def _best_match(lines_a: Sequence[str], lines_b: Sequence[str], threshold: float) -> tuple[str, float] | None:
    for line_a in lines_a:
        if len(line_a) < MIN_LINE_CHARS:
            continue
        for line_b in lines_b:
            if len(line_b) < MIN_LINE_CHARS:
                continue
            score = similarity(line_a, line_b)
            if score >= threshold:
                return line_a, score
    return None


# ---------------------------------------------------------------------------
# Oscillation
# ---------------------------------------------------------------------------

def detect_oscillation(diffs: Sequence[str], threshold: float) -> PatternMatch:
    """Flip-flopping edits across the last three diffs."""
    recent = list(diffs)[-3:]
    if len(recent) < 2:
        return PatternMatch()

    parsed = [split_diff_lines(d) for d in recent]

    for i in range(len(parsed) - 1):
        prev_added, prev_removed = parsed[i]
        curr_added, curr_removed = parsed[i + 1]

        hit = _best_match(prev_added, curr_removed, threshold)
        if hit:
            line, score = hit
            return PatternMatch(True, score, f'Added then removed: "{line[:PREVIEW_CHARS]}..."')

        hit = _best_match(prev_removed, curr_added, threshold)
        if hit:
            line, score = hit
            return PatternMatch(True, score, f'Removed then re-added: "{line[:PREVIEW_CHARS]}..."')

    if len(parsed) == 3:
        hit = _best_match(parsed[0][0], parsed[2][0], threshold)
        if hit:
            _, score = hit
            return PatternMatch(True, score, "Oscillating: same content added in iterations 1 and 3")

    return PatternMatch()


# ---------------------------------------------------------------------------
# Repetition
# ---------------------------------------------------------------------------

def detect_repetition(outputs: Sequence[str], threshold: float, window: int) -> PatternMatch:
    """Compare the latest output against up to ``window`` prior outputs."""
    if len(outputs) < 2:
        return PatternMatch()

    history = list(outputs)
    latest = history[-1]
    prior = history[:-1][-window:]

    patterns: list[str] = []
    max_similarity = 0.0

    for previous in prior:
        score = similarity(latest, previous)
        if score >= threshold:
            max_similarity = max(max_similarity, score)
            patterns.extend(find_repeated_phrases(latest, previous))

    latest_lower = latest.lower()
    for phrase in STUCK_PHRASES:
        if phrase not in latest_lower:
            continue
        occurrences = sum(1 for previous in prior if phrase in previous.lower())
        if occurrences >= 2:
            patterns.append(f'Repeated phrase: "{phrase}" ({occurrences + 1} times)')
            max_similarity = max(max_similarity, 0.85)

    unique = list(dict.fromkeys(patterns))[:MAX_PATTERNS]
    detected = bool(unique) and max_similarity >= threshold
    return PatternMatch(detected, max_similarity, unique[0] if unique else None, unique)


# ---------------------------------------------------------------------------
# Failing commands
# ---------------------------------------------------------------------------

def command_signature(command: str, error: str) -> str:
    payload = f"{command}::{error[:ERROR_SIGNATURE_CHARS]}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


def detect_ping_pong(signatures: Sequence[str], cycles: int) -> PatternMatch:
    """An A,B,A,B... tail of ``2 * cycles`` failing-command signatures."""
    window = cycles * 2
    if cycles < 1 or len(signatures) < window:
        return PatternMatch()

    recent = list(signatures)[-window:]
    a, b = recent[0], recent[1]
    if a == b:
        return PatternMatch()

    for i, sig in enumerate(recent):
        if sig != (a if i % 2 == 0 else b):
            return PatternMatch()

    return PatternMatch(True, 0.9, f"Alternating failures: {a} ↔ {b} ({cycles} cycles)")


def detect_command_failure(signatures: Sequence[str], threshold: int) -> PatternMatch:
    if not signatures:
        return PatternMatch()
    signature, count = Counter(signatures).most_common(1)[0]
    if count >= threshold:
        return PatternMatch(True, 0.8, signature)
    return PatternMatch()
