"""Text normalization helpers shared by the driver and route matchers."""

import re

from rapidfuzz.distance import Levenshtein

_PUNCT_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_SPACE_RE = re.compile(r"\s+", re.UNICODE)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]+")
_DOUBLES_RE = re.compile(r"(.)\1+", re.UNICODE)

_SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}


def str_or_none(value) -> str | None:
    """Trimmed string, or None for None / blank."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def norm(s: str) -> str:
    """Lowercase, punctuation to spaces, collapse whitespace."""
    s = _PUNCT_RE.sub(" ", s.strip().lower())
    return _SPACE_RE.sub(" ", s).strip()


def norm_truck(s: str) -> str:
    """Lowercase alphanumerics only: ``"Truck 25-12"`` -> ``"truck2512"``."""
    return _NON_ALNUM_RE.sub("", s.strip()).lower()


def squash_doubles(s: str) -> str:
    """Collapse runs of the same character: ``"jonnesss"`` -> ``"jones"``."""
    return _DOUBLES_RE.sub(r"\1", s)


def soundex(s: str) -> str:
    """American Soundex code (letter + 3 digits), ``""`` when no letters."""
    letters = [c for c in s.lower() if "a" <= c <= "z"]
    if not letters:
        return ""

    first = letters[0]
    code = first.upper()
    prev = _SOUNDEX_CODES.get(first, "")
    for c in letters[1:]:
        digit = _SOUNDEX_CODES.get(c, "")
        if digit and digit != prev:
            code += digit
            if len(code) == 4:
                break
        # h and w do not separate letters with the same code
        if c not in "hw":
            prev = digit
    return code.ljust(4, "0")


def split_name(name: str) -> tuple[str | None, str | None]:
    """Split a person name into (first, last).

    ``"Last, First"`` is honoured; otherwise the first and last whitespace
    separated tokens are used.
    """
    name = name.strip()
    if not name:
        return None, None

    if "," in name:
        last, first = (p.strip() for p in name.split(",", 1))
        return first or None, last or None

    parts = [p for p in _SPACE_RE.split(name) if p]
    if len(parts) == 1:
        return parts[0], None
    return parts[0], parts[-1]


def name_distance(a: str, b: str) -> int:
    """Levenshtein distance between normalized, double-squashed names."""
    return Levenshtein.distance(squash_doubles(norm(a)), squash_doubles(norm(b)))
