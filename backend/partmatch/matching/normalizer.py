"""Text normalization for line-item and catalog text.

Every comparison in the matching engine runs on normalized text, so
normalization must be stable: ``normalize(normalize(x)) == normalize(x)``.

Pipeline:
1. Strip diacritics (NFKD, drop combining marks) and lower-case
2. Expand connector shorthand ("w/" -> "with", "&" -> "and")
3. Replace hyphens and every character outside ``[a-z0-9./]`` with spaces
4. Collapse whitespace
5. Expand hardware and material abbreviations on whole words
"""

import re
import unicodedata
from functools import lru_cache
from typing import Dict, Optional, Tuple

# Whole-word abbreviations. Values must not themselves be keys.
ABBREVIATIONS: Dict[str, str] = {
    "hx": "hex",
    "hd": "head",
    "scr": "screw",
    "zp": "zinc plated",
    "ss": "stainless steel",
    "alum": "aluminum",
}

# Multi-word shorthand applied after single-word expansion.
PHRASE_ABBREVIATIONS: Tuple[Tuple[str, str], ...] = (
    ("st steel", "stainless steel"),
    ("stainless st", "stainless steel"),
    ("zinc pl", "zinc plated"),
)

_WITH_RE = re.compile(r"(?<![a-z0-9])w/")
_DISALLOWED_RE = re.compile(r"[^a-z0-9./\s]")
_WHITESPACE_RE = re.compile(r"\s+")
_ABBREVIATION_RE = re.compile(
    r"\b(" + "|".join(sorted(map(re.escape, ABBREVIATIONS), key=len, reverse=True)) + r")\b"
)
_PHRASE_RES = tuple(
    (re.compile(r"\b" + re.escape(short) + r"\b"), full)
    for short, full in PHRASE_ABBREVIATIONS
)


def _strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@lru_cache(maxsize=16384)
def normalize(text: Optional[str]) -> str:
    """Canonicalize free text for matching.

    Args:
        text: Raw text (line item, catalog field, alias). ``None`` allowed.

    Returns:
        Normalized text, or ``""`` for null/blank input. Callers treat an
        empty result as "no match possible".

    Example:
        >>> normalize("GR. 8 HX HD CAP SCR 5/16-18X2-1/2")
        'gr. 8 hex head cap screw 5/16 18x2 1/2'
    """
    if text is None:
        return ""
    text = str(text)
    if not text.strip():
        return ""

    result = _strip_diacritics(text).lower()

    result = _WITH_RE.sub(" with ", result)
    result = result.replace("&", " and ")

    result = result.replace("-", " ")
    result = _DISALLOWED_RE.sub(" ", result)
    result = _WHITESPACE_RE.sub(" ", result).strip()

    result = _ABBREVIATION_RE.sub(lambda m: ABBREVIATIONS[m.group(1)], result)
    for pattern, full in _PHRASE_RES:
        result = pattern.sub(full, result)

    return result
