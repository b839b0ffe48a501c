"""Code similarity for duplicate detection and lesson matching.

Snippets are normalized (literals and declared variable names replaced by
placeholders, whitespace collapsed) and compared by token-set Jaccard
similarity, blended with a line-count ratio:

    similarity = 0.8 * jaccard(tokens_a, tokens_b) + 0.2 * line_ratio

Token sets are order-insensitive, so reordered statements still match. The
line-count term penalizes snippets whose tokens overlap by coincidence but
whose shape differs.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping
from dataclasses import dataclass

JACCARD_WEIGHT = 0.8
LINE_RATIO_WEIGHT = 0.2
DEFAULT_SIMILARITY_THRESHOLD = 0.8

_STRING_LITERAL = re.compile(
    r"'(?:[^'\\\n]|\\.)*'"
    r'|"(?:[^"\\\n]|\\.)*"'
    r"|`(?:[^`\\]|\\.)*`"
)
_NUMBER_LITERAL = re.compile(r"\b\d+(?:\.\d+)?\b")
_DECLARATION = re.compile(r"\b(const|let|var)\s+([A-Za-z_$][\w$]*)")
_WHITESPACE = re.compile(r"\s+")
_TOKEN_SPLIT = re.compile(r"[\s.,;:(){}\[\]<>]+")
_WORD = re.compile(r"\w+")


@dataclass(frozen=True)
class SimilarityMatch:
    """An existing entry that is similar to a candidate."""

    id: str
    similarity: float


def normalize_code(code: str) -> str:
    """Canonical form of a snippet for comparison.

    String literals become <STRING>, numbers become <NUMBER>, names declared
    with const/let/var become <VAR> wherever they are used, and whitespace
    runs collapse to a single space.
    """
    normalized = _STRING_LITERAL.sub("<STRING>", code)
    normalized = _NUMBER_LITERAL.sub("<NUMBER>", normalized)

    declared = {match.group(2) for match in _DECLARATION.finditer(normalized)}
    if declared:
        names = "|".join(re.escape(name) for name in sorted(declared, key=len, reverse=True))
        normalized = re.sub(rf"(?<![\w$])(?:{names})(?![\w$])", "<VAR>", normalized)

    return _WHITESPACE.sub(" ", normalized).strip()


def tokenize(code: str) -> set[str]:
    """Split code into a set of non-empty tokens."""
    return {token for token in _TOKEN_SPLIT.split(code) if token}


def count_lines(code: str) -> int:
    """Raw line count; 0 for an empty string."""
    if not code:
        return 0
    return len(code.split("\n"))


def count_code_lines(code: str) -> int:
    """Non-blank line count, used for minimum-size checks."""
    return sum(1 for line in code.splitlines() if line.strip())


def jaccard(a: set[str], b: set[str]) -> float:
    """Jaccard index of two sets; two empty sets are identical."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def line_ratio(lines_a: int, lines_b: int) -> float:
    """1.0 for equal line counts, falling toward 0.0 as they diverge."""
    longest = max(lines_a, lines_b)
    if longest == 0:
        return 1.0
    return 1.0 - abs(lines_a - lines_b) / longest


def similarity(code_a: str, code_b: str) -> float:
    """Similarity of two snippets in [0, 1], rounded to 2 decimals.

    Symmetric. Either input empty (or whitespace only) returns 0.0; identical
    normalized forms return 1.0.
    """
    if not code_a.strip() or not code_b.strip():
        return 0.0

    norm_a = normalize_code(code_a)
    norm_b = normalize_code(code_b)
    if norm_a == norm_b:
        return 1.0

    token_score = jaccard(tokenize(norm_a), tokenize(norm_b))
    shape_score = line_ratio(count_lines(code_a), count_lines(code_b))
    return round(JACCARD_WEIGHT * token_score + LINE_RATIO_WEIGHT * shape_score, 2)


def is_near_duplicate(
    code_a: str,
    code_b: str,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> bool:
    return similarity(code_a, code_b) >= threshold


def find_near_duplicates(
    candidate: str,
    existing: Mapping[str, str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[SimilarityMatch]:
    """Linear scan for entries at or above threshold.

    Args:
        candidate: Code being checked.
        existing: Mapping of entry id to its code.
        threshold: Minimum similarity to report.

    Returns:
        Matches sorted by similarity, highest first (ties keep input order).
    """
    matches = []
    for entry_id, code in existing.items():
        score = similarity(candidate, code)
        if score >= threshold:
            matches.append(SimilarityMatch(id=entry_id, similarity=score))
    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches


def code_fingerprint(code: str) -> str:
    """Short stable hash of the normalized code."""
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()[:16]


def text_relevance(query: str, text: str) -> float:
    """Keyword relevance of text to a query, in [0, 1].

    An empty query matches everything. The whole query appearing verbatim
    scores 1.0; otherwise the score is the fraction of query words (longer
    than one character) found in the text.
    """
    query_lower = query.strip().lower()
    if not query_lower:
        return 1.0
    text_lower = text.lower()
    if query_lower in text_lower:
        return 1.0

    words = [w for w in _WORD.findall(query_lower) if len(w) > 1]
    if not words:
        return 0.0
    found = sum(1 for w in words if w in text_lower)
    return found / len(words)
