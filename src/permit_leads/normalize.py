import re
from typing import List, Optional, Pattern, Tuple


_WHITESPACE_RE = re.compile(r"\s+")
_NAME_PUNCT_RE = re.compile(r"[.,\-_#&'\"()]")

# Multi-word suffixes lead so the whole phrase goes, not just "trust".
# "l l c" and friends are dotted abbreviations after punctuation is stripped.
_NAME_SUFFIXES = [
    "l l c",
    "l l p",
    "l p",
    "revocable trust",
    "family trust",
    "living trust",
    "llc",
    "inc",
    "corp",
    "corporation",
    "company",
    "co",
    "ltd",
    "limited",
    "lp",
    "llp",
    "pllc",
    "trust",
    "holdings",
    "enterprises",
    "properties",
    "group",
    "partners",
    "investments",
    "development",
    "developers",
    "realty",
]
_NAME_SUFFIX_RE = re.compile(
    r"\b(?:"
    + "|".join(r"\s+".join(re.escape(w) for w in s.split()) for s in _NAME_SUFFIXES)
    + r")\b"
)

# Evaluated in order, first match wins.
ENTITY_TYPE_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"\bl\s*\.?\s*l\s*\.?\s*c\b\.?", re.IGNORECASE), "LLC"),
    (re.compile(r"\bl\s*\.?\s*l\s*\.?\s*p\b\.?", re.IGNORECASE), "LLP"),
    (re.compile(r"\b(?:l\s*\.?\s*p\b\.?|limited partnership\b)", re.IGNORECASE), "LP"),
    (re.compile(r"\b(?:inc|incorporated|corp|corporation)\b", re.IGNORECASE), "Corporation"),
    (re.compile(r"\b(?:trust|trustee|trustees)\b", re.IGNORECASE), "Trust"),
    (re.compile(r"\b(?:company|co)\b", re.IGNORECASE), "Company"),
]
DEFAULT_ENTITY_TYPE = "Individual"


def normalize_text(value: Optional[str]) -> str:
    if value is None:
        return ""
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned.casefold()


def normalize_name(name: Optional[str]) -> str:
    """Canonical developer/owner key.

    Lower-cased, punctuation replaced by spaces, legal suffix words removed as
    whole words, whitespace collapsed. Idempotent.
    """

    if not name:
        return ""
    n = str(name).lower()
    n = _NAME_PUNCT_RE.sub(" ", n)
    n = _WHITESPACE_RE.sub(" ", n).strip()
    # Stripping one suffix can line up letters that spell another.
    while True:
        stripped = _WHITESPACE_RE.sub(" ", _NAME_SUFFIX_RE.sub(" ", n)).strip()
        if stripped == n:
            return n
        n = stripped


def names_match(a: Optional[str], b: Optional[str]) -> bool:
    return normalize_name(a) == normalize_name(b)


def classify_entity_type(name: Optional[str]) -> str:
    raw = (name or "").strip()
    if not raw:
        return DEFAULT_ENTITY_TYPE
    for pattern, label in ENTITY_TYPE_PATTERNS:
        if pattern.search(raw):
            return label
    return DEFAULT_ENTITY_TYPE
