"""Fuzzy zone-name matching.

OCR output for zone names is close but not exact (``0`` for ``O``, ``I`` for
``L``). Candidates are compared against the known vocabulary by Levenshtein
distance and the closest names are offered as corrections.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from .config import Config
from .schemas import ValidationResult


def levenshtein_distance(a: str, b: str) -> int:
    """Return the edit distance between ``a`` and ``b``.

    Classic dynamic program over a ``(len(b) + 1) x (len(a) + 1)`` table.
    Substitution, insertion and deletion each cost 1; transpositions are two
    edits.
    """

    if not a:
        return len(b)
    if not b:
        return len(a)

    # Row i holds distances for b[:i] against every prefix of a
    matrix = [[0] * (len(a) + 1) for _ in range(len(b) + 1)]
    for i in range(len(b) + 1):
        matrix[i][0] = i
    for j in range(len(a) + 1):
        matrix[0][j] = j

    for i in range(1, len(b) + 1):
        for j in range(1, len(a) + 1):
            if b[i - 1] == a[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = min(
                    matrix[i - 1][j - 1] + 1,  # substitution
                    matrix[i][j - 1] + 1,      # insertion
                    matrix[i - 1][j] + 1,      # deletion
                )

    return matrix[len(b)][len(a)]


def suggest_zone_names(
    candidate: Optional[str],
    vocabulary: Iterable[str],
    *,
    max_distance: Optional[int] = None,
    limit: Optional[int] = None,
) -> ValidationResult:
    """Check ``candidate`` against ``vocabulary`` and propose corrections.

    Returns:
        - invalid, no suggestions: candidate is None/empty
        - valid, ``[match]``: exact (case-insensitive) match
        - invalid, closest names: up to ``limit`` names within ``max_distance``,
          nearest first, ties kept in vocabulary order
        - invalid, ``[candidate]``: nothing close enough; the text as typed is
          handed back unchanged
    """

    if not candidate:
        return ValidationResult(is_valid=False, suggestions=[])

    max_distance = Config.MAX_SUGGESTION_DISTANCE if max_distance is None else max_distance
    limit = Config.MAX_SUGGESTIONS if limit is None else limit

    # Vocabulary is canonical-case already; only the candidate needs folding.
    # Surrounding whitespace is kept on purpose so " Martlock " is not an exact match.
    upper = candidate.upper()
    known: Sequence[str] = vocabulary if isinstance(vocabulary, (list, tuple)) else list(vocabulary)

    if upper in known:
        return ValidationResult(is_valid=True, suggestions=[upper])

    scored: List[Tuple[int, str]] = []
    for name in known:
        distance = levenshtein_distance(upper, name)
        if distance <= max_distance:
            scored.append((distance, name))

    # sort() is stable, so equal distances keep vocabulary order
    scored.sort(key=lambda item: item[0])
    best = [name for _, name in scored[:limit]]

    if not best:
        return ValidationResult(is_valid=False, suggestions=[candidate])

    return ValidationResult(is_valid=False, suggestions=best)


class FuzzyMatcher:
    """Binds a vocabulary so callers only pass the candidate."""

    def __init__(
        self,
        vocabulary: Iterable[str],
        *,
        max_distance: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        self.vocabulary: List[str] = list(vocabulary)
        self.max_distance = max_distance
        self.limit = limit

    def suggest(self, candidate: Optional[str]) -> ValidationResult:
        return suggest_zone_names(
            candidate,
            self.vocabulary,
            max_distance=self.max_distance,
            limit=self.limit,
        )
