"""Similarity scorers used by the matching engine.

All scorers are total: they accept normalized text (or embedding vectors),
never raise for malformed input, return 0.0 for empty input and always
return a value in [0.0, 1.0]. ``vector_similarity`` is the one exception
to "always a float": it returns ``None`` when the signal cannot be
computed, so callers can redistribute its weight.
"""

import re
from difflib import SequenceMatcher
from functools import lru_cache
from typing import Dict, FrozenSet, Iterable, Optional, Sequence

import numpy as np
from rapidfuzz.distance import Levenshtein

_WORD_RE = re.compile(r"[a-z0-9]+")

# Blend weights for the fuzzy estimate
EDIT_DISTANCE_WEIGHT = 0.5
WORD_OVERLAP_WEIGHT = 0.3
SUBSTRING_WEIGHT = 0.2

# Partial common substrings shorter than this carry no signal
MIN_SUBSTRING_LENGTH = 3
MAX_PARTIAL_SUBSTRING_LENGTH = 10


def clamp01(value: float) -> float:
    """Clamp a score into [0.0, 1.0]; NaN becomes 0.0."""
    if value != value:
        return 0.0
    return max(0.0, min(1.0, float(value)))


@lru_cache(maxsize=65536)
def trigrams(text: str) -> FrozenSet[str]:
    """Character trigrams of a text, pg_trgm style.

    Each alphanumeric word is padded with two leading spaces and one
    trailing space before being cut into trigrams, so short tokens such
    as part-number fragments still produce trigrams.
    """
    grams = set()
    for word in _WORD_RE.findall(text or ""):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def trigram_similarity(a: str, b: str) -> float:
    """Trigram set similarity (shared / union) between two normalized texts."""
    if not a or not b:
        return 0.0
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    shared = len(grams_a & grams_b)
    if not shared:
        return 0.0
    return clamp01(shared / len(grams_a | grams_b))


def best_trigram_similarity(query: str, fields: Iterable[str]) -> float:
    """Maximum trigram similarity of ``query`` across candidate fields."""
    return max((trigram_similarity(query, field) for field in fields), default=0.0)


def edit_similarity(a: str, b: str) -> float:
    """``1 - levenshtein(a, b) / max(len(a), len(b))``, clamped to [0, 1]."""
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    distance = Levenshtein.distance(a, b)
    return clamp01(1.0 - distance / longest)


def word_overlap(a: str, b: str) -> float:
    """Share of words of ``a`` found in ``b``, over the longer word count."""
    words_a = a.split()
    words_b = b.split()
    if not words_a or not words_b:
        return 0.0
    vocabulary = set(words_b)
    common = sum(1 for word in words_a if word in vocabulary)
    return clamp01(common / max(len(words_a), len(words_b)))


def substring_overlap(a: str, b: str) -> float:
    """Longest-common-substring length relative to the longer text.

    Full containment of the shorter text scores ``len(shorter) / len(longer)``.
    Otherwise the longest shared run of at least 3 characters counts,
    capped at 10 characters.
    """
    if not a or not b:
        return 0.0
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    if shorter in longer:
        return clamp01(len(shorter) / len(longer))
    if len(shorter) < MIN_SUBSTRING_LENGTH:
        return 0.0
    matcher = SequenceMatcher(None, shorter, longer, autojunk=False)
    match = matcher.find_longest_match(0, len(shorter), 0, len(longer))
    if match.size < MIN_SUBSTRING_LENGTH:
        return 0.0
    return clamp01(min(match.size, MAX_PARTIAL_SUBSTRING_LENGTH) / len(longer))


def fuzzy_similarity(a: str, b: str) -> float:
    """Blended fuzzy similarity between two normalized texts.

    Edit distance alone punishes word reordering harshly, so it is blended
    with word overlap and common-substring overlap (50% / 30% / 20%).
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    score = (
        EDIT_DISTANCE_WEIGHT * edit_similarity(a, b)
        + WORD_OVERLAP_WEIGHT * word_overlap(a, b)
        + SUBSTRING_WEIGHT * substring_overlap(a, b)
    )
    return clamp01(score)


def best_fuzzy_similarity(query: str, fields: Iterable[str]) -> float:
    """Maximum fuzzy similarity of ``query`` across candidate fields."""
    return max((fuzzy_similarity(query, field) for field in fields), default=0.0)


def length_ratio(a_length: int, b_length: int) -> float:
    """Shorter over longer length; 0.0 when either is empty."""
    if a_length <= 0 or b_length <= 0:
        return 0.0
    return min(a_length, b_length) / max(a_length, b_length)


def symbol_word_share(text: str) -> float:
    """Share of the words of ``text`` that hold no letter or digit.

    Such words (``/``, ``.``) produce no trigram, so they are the only
    words two texts can have in common without sharing a trigram.
    """
    words = (text or "").split()
    if not words:
        return 0.0
    return sum(1 for word in words if not _WORD_RE.search(word)) / len(words)


def fuzzy_upper_bound(ratio: float, word_share: float) -> float:
    """Highest ``fuzzy_similarity`` two texts can reach given their lengths.

    Edit similarity and substring overlap never exceed the length ratio
    of the shorter to the longer text; word overlap never exceeds
    ``word_share``.

    Args:
        ratio: ``length_ratio`` of the two texts
        word_share: Upper bound for the word overlap term
    """
    return clamp01(
        (EDIT_DISTANCE_WEIGHT + SUBSTRING_WEIGHT) * ratio + WORD_OVERLAP_WEIGHT * word_share
    )


def min_length_ratio(fuzzy: float, word_share: float) -> float:
    """Smallest length ratio at which ``fuzzy_upper_bound`` reaches ``fuzzy``."""
    return (fuzzy - WORD_OVERLAP_WEIGHT * word_share) / (EDIT_DISTANCE_WEIGHT + SUBSTRING_WEIGHT)


def combine_signals(weights: Dict[str, float], signals: Dict[str, Optional[float]]) -> float:
    """Weighted mean of the signals that could be computed.

    A ``None`` signal drops out together with its weight, so the remaining
    weights are scaled up proportionally.
    """
    total_weight = 0.0
    weighted = 0.0
    for name, value in signals.items():
        if value is None:
            continue
        total_weight += weights[name]
        weighted += weights[name] * clamp01(value)

    if total_weight <= 0.0:
        return 0.0
    return clamp01(weighted / total_weight)


def text_similarity(a: str, b: str) -> float:
    """``max(trigram, fuzzy)``; used to compare queries with training text."""
    return max(trigram_similarity(a, b), fuzzy_similarity(a, b))


def vector_similarity(
    a: Optional[Sequence[float]],
    b: Optional[Sequence[float]],
) -> Optional[float]:
    """Cosine similarity (``1 - cosine_distance``) of two embeddings.

    Returns:
        Similarity clamped to [0, 1], or ``None`` when either vector is
        missing, empty, zero-length or the dimensions differ.
    """
    if a is None or b is None:
        return None
    try:
        va = np.asarray(a, dtype=float)
        vb = np.asarray(b, dtype=float)
    except (TypeError, ValueError):
        return None
    if va.ndim != 1 or va.size == 0 or va.shape != vb.shape:
        return None
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return None
    return clamp01(float(np.dot(va, vb)) / norm)
