from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable, Optional

from permit_leads.permits.models import UNKNOWN_ADDRESS


CITY_SUFFIX = "Los Angeles, CA"

_MONEY_STRIP_RE = re.compile(r"[\s$,]")
_WHITESPACE_RE = re.compile(r"\s+")

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%m/%d/%Y",
    "%m/%d/%y",
)


def clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return text or None


def parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
    else:
        text = _MONEY_STRIP_RE.sub("", str(value))
        if not text:
            return None
        try:
            out = float(text)
        except ValueError:
            return None
    if out != out or out in (float("inf"), float("-inf")):
        return None
    return out


def parse_money(value: Any) -> Optional[float]:
    amount = parse_float(value)
    if amount is None or amount < 0:
        return None
    return amount


def parse_int(value: Any) -> Optional[int]:
    num = parse_float(value)
    if num is None:
        return None
    return int(num)


def parse_date(value: Any) -> Optional[str]:
    """Return an ISO date string, or None when the value is not a date."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if not text:
        return None
    # Socrata floating timestamps: 2024-03-01T00:00:00.000
    candidate = text.replace("Z", "")
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(candidate).date().isoformat()
    except ValueError:
        return None


def build_address(parts: Iterable[Any], zip_code: Any = None) -> str:
    fragments = [p for p in (clean_str(x) for x in parts) if p]
    if not fragments:
        return UNKNOWN_ADDRESS
    zip_text = clean_str(zip_code)
    address = f"{' '.join(fragments)}, {CITY_SUFFIX}"
    if zip_text:
        address += f" {zip_text}"
    return address


def join_name(*parts: Any) -> Optional[str]:
    fragments = [p for p in (clean_str(x) for x in parts) if p]
    if not fragments:
        return None
    return " ".join(fragments)
