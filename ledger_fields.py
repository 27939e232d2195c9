"""
ledger_fields.py — Travel field extraction for ledger rows
===========================================================
Small, pure helpers that turn individual ledger cells into structured
travel attributes:

  • normalize_date          — any date-like cell → 'YYYY-MM-DD' or ''
  • parse_composite         — "Ali DXB-LHE PNR54321 2025-08-01" style cells
  • parse_narration         — "SALES - MR NAME - ROUTE - PNR - DD/MM/YYYY"
  • classify_flying_status  — Upcoming / Flying Today / Flown / Unknown

Nothing here raises for bad input; callers get '' or None back.
"""

from __future__ import annotations

import re
import warnings
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

# ══════════════════════════════════════════════════════════════════════════════
# Date normalisation
# ══════════════════════════════════════════════════════════════════════════════

# Spreadsheet day 0. Day 60 is the phantom 29 Feb 1900.
_SERIAL_EPOCH = date(1899, 12, 30)
_PHANTOM_LEAP_SERIAL = 60

_DIGITS_ONLY = re.compile(r"^\d+$")


def _is_falsy(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:     # NaN
        return True
    if value is pd.NaT:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    return isinstance(value, str) and value == ""


def _from_serial(serial: float) -> str:
    if serial == _PHANTOM_LEAP_SERIAL:
        serial += 1
    try:
        return (_SERIAL_EPOCH + timedelta(days=serial)).strftime("%Y-%m-%d")
    except OverflowError:
        return ""


def _from_day_first(text: str) -> str:
    parts = text.strip().split("/")
    if len(parts) != 3:
        return ""
    try:
        d, m, y = (int(p.strip()) for p in parts)
    except ValueError:
        return ""
    if not (d and m and y) or y < 1000:
        return ""
    try:
        date(y, m, d)
    except ValueError:
        return ""
    return f"{y:04d}-{m:02d}-{d:02d}"


def normalize_date(value: Any) -> str:
    """Convert any date-like value → 'YYYY-MM-DD', or '' when it cannot be read.

    Resolution order: native date objects, spreadsheet serial numbers
    (> 59), DD/MM/YYYY text, then generic text parsing. Ambiguous input is
    never defaulted to today.
    """
    if _is_falsy(value):
        return ""

    if isinstance(value, (datetime, date)):            # pd.Timestamp included
        return value.strftime("%Y-%m-%d")

    if isinstance(value, bool):
        return ""

    if isinstance(value, (int, float)):
        return _from_serial(float(value)) if value > 59 else ""

    text = str(value).strip()
    if not text:
        return ""

    if _DIGITS_ONLY.match(text):
        serial = int(text)
        return _from_serial(serial) if serial > 59 else ""

    if "/" in text:
        out = _from_day_first(text)
        if out:
            return out

    # Slash dates the strict path rejected (e.g. two-digit years) are still DD/MM
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(text, dayfirst="/" in text)
    except (ValueError, TypeError, OverflowError):
        return ""
    if parsed is pd.NaT or pd.isna(parsed):
        return ""
    # Bare month names and the like come back as year 1
    if parsed.year < 1000:
        return ""
    return f"{parsed.year:04d}-{parsed.month:02d}-{parsed.day:02d}"


def _reorder_dmy(text: str) -> Optional[str]:
    """'06/12/2024' → '2024-12-06' by reordering; no calendar check."""
    parts = text.split("/")
    if len(parts) != 3:
        return None
    d, m, y = (p.strip() for p in parts)
    return f"{y}-{m.zfill(2)}-{d.zfill(2)}"


# ══════════════════════════════════════════════════════════════════════════════
# Travel field containers
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TravelFields:
    customer_name: Optional[str] = None
    route: Optional[str] = None
    pnr: Optional[str] = None
    flying_date: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


EMPTY_FIELDS = TravelFields()


def _or_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


# ══════════════════════════════════════════════════════════════════════════════
# Composite field — "<Name> <ROUTE> <PNR> <Date>"
# ══════════════════════════════════════════════════════════════════════════════

class _TemplateMatcher:
    """One regex template; yields a full TravelFields or defers with None."""

    def __init__(self, name: str, pattern: str):
        self.name = name
        self.regex = re.compile(pattern, re.ASCII)

    def match(self, text: str) -> Optional[TravelFields]:
        m = self.regex.match(text)
        if not m:
            return None
        name, route, pnr, flying = m.groups()
        return TravelFields(_or_none(name), _or_none(route), _or_none(pnr), _or_none(flying))

    def __repr__(self) -> str:
        return f"<_TemplateMatcher {self.name}>"


# Most specific first.
_COMPOSITE_TEMPLATES: List[_TemplateMatcher] = [
    _TemplateMatcher(
        "pnr_prefixed",
        r"^([A-Za-z\s]+?)\s+([A-Z]{3}[/\-][A-Z]{3})\s+(PNR\w+)\s+(\d{4}-\d{2}-\d{2})$",
    ),
    _TemplateMatcher(
        "any_pnr",
        r"^([A-Za-z\s]+?)\s+([A-Z]{3}[/\-][A-Z]{3})\s+(\w+)\s+(\d{4}-\d{2}-\d{2})$",
    ),
    _TemplateMatcher(
        "loose",
        r"^([A-Za-z\s]+?)\s+([A-Z]{2,4}[/\-][A-Z]{2,4})\s+(\w+)\s+(.+)$",
    ),
]

_TOKEN_ROUTE = re.compile(r"^[A-Z]{2,4}[/\-][A-Z]{2,4}$")
_TOKEN_PNR = re.compile(r"^(PNR)?\w+$", re.ASCII)
_TOKEN_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _token_scan(text: str) -> TravelFields:
    """Catch-all: classify each whitespace token by shape."""
    words = text.split()
    customer_name = route = pnr = flying_date = None

    for i, word in enumerate(words):
        if _TOKEN_ROUTE.match(word):
            route = word.replace("/", "-")
            if i > 0:
                customer_name = " ".join(words[:i])
            continue
        if _TOKEN_PNR.match(word) and len(word) >= 5:
            pnr = word
            continue
        if _TOKEN_ISO_DATE.match(word):
            flying_date = word

    return TravelFields(customer_name, route, pnr, flying_date)


def parse_composite(cell: Any) -> TravelFields:
    """Split a packed "<Name> <ROUTE> <PNR> <Date>" cell into its parts."""
    if not cell or not isinstance(cell, str):
        return EMPTY_FIELDS
    text = cell.strip()
    for matcher in _COMPOSITE_TEMPLATES:
        found = matcher.match(text)
        if found is not None:
            return found
    return _token_scan(text)


# ══════════════════════════════════════════════════════════════════════════════
# Narration — accounting phrasing
# ══════════════════════════════════════════════════════════════════════════════

_SALES_SEPARATOR = " - "
_TITLE_PREFIX = re.compile(r"^(MR|MRS|MISS|MS)\.?\s+", re.IGNORECASE)

_NARR_ROUTE = re.compile(r"([A-Z]{3}(?:[/\-][A-Z]{3}){1,4})")
_NARR_PNR = re.compile(r"([A-Z0-9]{5,8})(?:\s|$|-)")
_NARR_DATE = re.compile(r"(\d{2}/\d{2}/\d{4})")


def _parse_sales_narration(text: str) -> TravelFields:
    parts = text.split(_SALES_SEPARATOR)
    if len(parts) < 5:
        return EMPTY_FIELDS

    name = _TITLE_PREFIX.sub("", parts[1].strip(), count=1)
    date_part = parts[4].strip()
    flying = _reorder_dmy(date_part) if "/" in date_part else None

    return TravelFields(
        customer_name=name or None,
        route=_or_none(parts[2]),
        pnr=_or_none(parts[3]),
        flying_date=flying,
    )


def _scan_narration(text: str) -> TravelFields:
    route = pnr = flying = None

    m = _NARR_ROUTE.search(text)
    if m:
        route = m.group(1).replace("/", "-")

    m = _NARR_PNR.search(text)
    if m:
        pnr = m.group(1)

    m = _NARR_DATE.search(text)
    if m:
        flying = _reorder_dmy(m.group(1))

    return TravelFields(None, route, pnr, flying)


def parse_narration(text: Any) -> TravelFields:
    """Extract travel fields from a ledger narration.

    ``SALES - MR SULEMAN SAFDAR - DXB/SKT/DXB - 94A63T - 06/12/2024`` is split
    positionally; any other text is scanned for a route, a PNR-shaped token
    and a DD/MM/YYYY date independently.
    """
    if not text or not isinstance(text, str):
        return EMPTY_FIELDS
    if "SALES" in text.upper():
        return _parse_sales_narration(text)
    return _scan_narration(text)


# ══════════════════════════════════════════════════════════════════════════════
# Flying status
# ══════════════════════════════════════════════════════════════════════════════

STATUS_UNKNOWN = "Unknown"
STATUS_UPCOMING = "Upcoming"
STATUS_TODAY = "Flying Today"
STATUS_FLOWN = "Flown"


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    iso = normalize_date(value)
    if not iso:
        return None
    try:
        return date.fromisoformat(iso)
    except ValueError:
        return None


def classify_flying_status(flying_date: Any, reference_date: Optional[date] = None) -> str:
    """Compare a flying date with the reference day (date only, no time)."""
    if not flying_date:
        return STATUS_UNKNOWN
    flying = _as_date(flying_date)
    if flying is None:
        return STATUS_UNKNOWN

    today = _as_date(reference_date) if reference_date is not None else date.today()
    if flying > today:
        return STATUS_UPCOMING
    if flying == today:
        return STATUS_TODAY
    return STATUS_FLOWN
