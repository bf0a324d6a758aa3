"""
Token-set similarity used by the Spindle loop detector.

Texts are lowercased and split on whitespace and punctuation; two texts are
compared by the Jaccard index of their token sets.
"""

from __future__ import annotations

import re

_TOKEN_SPLIT = re.compile(r"[\s.,;:!?\-()\[\]{}\"']+")
_SENTENCE_SPLIT = re.compile(r"[.!?\n]+")

MIN_FRAGMENT_CHARS = 20
PHRASE_MATCH = 0.9
PHRASE_PREVIEW_CHARS = 60


def tokenize(text: str) -> set[str]:
    return {tok for tok in _TOKEN_SPLIT.split(text.lower()) if tok}


def similarity(a: str, b: str) -> float:
    """Jaccard similarity of the token sets of ``a`` and ``b``, in [0, 1]."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0

    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def _fragments(text: str) -> list[str]:
    return [frag for frag in _SENTENCE_SPLIT.split(text) if len(frag.strip()) > MIN_FRAGMENT_CHARS]


def find_repeated_phrases(a: str, b: str, max_phrases: int = 5) -> list[str]:
    """Sentence fragments of ``a`` that reappear (near-verbatim) in ``b``."""
    fragments_b = _fragments(b)
    repeated: list[str] = []

    for frag_a in _fragments(a):
        for frag_b in fragments_b:
            if similarity(frag_a, frag_b) >= PHRASE_MATCH:
                repeated.append(frag_a.strip()[:PHRASE_PREVIEW_CHARS] + "...")
                break
        if len(repeated) >= max_phrases:
            break

    return repeated
