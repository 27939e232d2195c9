"""
ledger_parser.py — Travel agency ledger parser
===============================================
Turns the first sheet of an uploaded ledger export into booking entries.

Two layouts are understood:
  • raw-ledger  — accounting export ("All Ledgers", "TRAVELS",
                  "Statement Period" banners, SALES narration in column 5)
  • standard    — pre-cleaned travel sheet with a composite detail column

Both run through one pipeline; a FormatProfile carries everything that
differs between them (balance scan, amount handling, default statuses).

Design principles
-----------------
  1. Per-row problems never raise — the row is skipped and reported.
  2. Only a structurally empty sheet is a hard failure (LedgerParseError).
  3. NEVER trust cell types — dates can be datetime | str | float | None.
  4. No state survives a call; "today" is an explicit reference date.

Usage
-----
    from ledger_parser import parse_file, process

    result = parse_file(file_bytes, filename="raw ledger.xlsx")
    result = process(grid, "ledger.csv", reference_date=date(2024, 12, 6))
    payload = result.to_dict()
"""

from __future__ import annotations

import base64
import csv
import io
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pandas as pd

from ledger_fields import (
    STATUS_UNKNOWN,
    TravelFields,
    classify_flying_status,
    normalize_date,
    parse_composite,
    parse_narration,
)

logger = logging.getLogger(__name__)

RawGrid = List[List[Any]]

RAW_LEDGER = "raw-ledger"
STANDARD = "standard"


class LedgerParseError(ValueError):
    """Raised when an upload has no usable structure at all."""


# ══════════════════════════════════════════════════════════════════════════════
# Primitive helpers
# ══════════════════════════════════════════════════════════════════════════════

def _clean(v: Any) -> str:
    """Return stripped cell text; '' when None/NaN. Whole floats lose '.0'."""
    if v is None or v is pd.NaT:
        return ""
    if isinstance(v, float):
        if v != v:                                   # NaN fast-path
            return ""
        if v.is_integer():
            return str(int(v))
    if isinstance(v, datetime):
        if (v.hour, v.minute, v.second, v.microsecond) == (0, 0, 0, 0):
            return v.strftime("%Y-%m-%d")
        return v.isoformat(sep=" ")
    if isinstance(v, date):
        return v.isoformat()
    return str(v).strip()


def _is_blank(v: Any) -> bool:
    return _clean(v) == ""


def _is_missing(v: Any) -> bool:
    """Blank, or a numeric zero (empty formula cells export as 0)."""
    if isinstance(v, (int, float)) and not isinstance(v, bool) and v == 0:
        return True
    return _is_blank(v)


def _row_text(row: List[Any]) -> str:
    return " ".join(_clean(v) for v in row)


_LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_number(text: str) -> Optional[float]:
    """Read the leading number of ``text``: '12abc' → 12.0, '1,234' → 1.0."""
    m = _LEADING_NUMBER.match(text.strip())
    if not m:
        return None
    return float(m.group(0))


def _to_amount(v: Any, strip_thousands: bool) -> Optional[float]:
    """Convert an amount cell → float, or None when blank, zero or '-'."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        if v != v or v == 0:
            return None
        return float(v)
    s = _clean(v)
    if s in ("", "-"):
        return None
    if strip_thousands:
        s = s.replace(",", "")
    return _parse_number(s)


def _pad(row: List[Any], width: int) -> List[Any]:
    return (list(row) + [None] * width)[:width]


# ══════════════════════════════════════════════════════════════════════════════
# Result types
# ══════════════════════════════════════════════════════════════════════════════

@dataclass
class OpeningBalance:
    date: str
    amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "amount": self.amount}


@dataclass
class ParsedEntry:
    date: str
    voucher: str
    reference: Optional[str] = None
    narration: Optional[str] = None
    debit: Optional[float] = None
    credit: Optional[float] = None
    balance: Optional[float] = None
    customer_name: Optional[str] = None
    route: Optional[str] = None
    pnr: Optional[str] = None
    flying_date: Optional[str] = None
    flying_status: str = STATUS_UNKNOWN
    customer_rate: float = 0
    company_rate: float = 0
    profit: float = 0
    booking_status: str = "Pending"
    payment_status: str = "Pending"

    def to_dict(self) -> Dict[str, Any]:
        """camelCase shape shared by the upload response and the database layer."""
        return {
            "date": self.date,
            "voucher": self.voucher,
            "reference": self.reference,
            "narration": self.narration,
            "debit": self.debit,
            "credit": self.credit,
            "balance": self.balance,
            "customerName": self.customer_name,
            "route": self.route,
            "pnr": self.pnr,
            "flyingDate": self.flying_date,
            "flyingStatus": self.flying_status,
            "customerRate": self.customer_rate,
            "companyRate": self.company_rate,
            "profit": self.profit,
            "bookingStatus": self.booking_status,
            "paymentStatus": self.payment_status,
        }


@dataclass
class SkippedRow:
    row_number: int                                  # 1-based, as shown in the spreadsheet
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row_number, "reason": self.reason}


@dataclass
class ParseResult:
    sheet_format: str
    opening_balance: Optional[OpeningBalance] = None
    entries: List[ParsedEntry] = field(default_factory=list)
    skipped_rows: List[SkippedRow] = field(default_factory=list)

    @property
    def total_records(self) -> int:
        return len(self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sheetFormat": self.sheet_format,
            "totalRecords": self.total_records,
            "openingBalance": self.opening_balance.to_dict() if self.opening_balance else None,
            "entries": [e.to_dict() for e in self.entries],
            "skippedRows": [s.to_dict() for s in self.skipped_rows],
        }


# ══════════════════════════════════════════════════════════════════════════════
# Sheet format detection
# ══════════════════════════════════════════════════════════════════════════════

_RAW_LEDGER_MARKERS = ("All Ledgers", "TRAVELS", "Statement Period")


def classify_sheet(grid: RawGrid, filename: str = "") -> str:
    """Return 'raw-ledger' or 'standard' for an uploaded grid."""
    if "raw" in (filename or "").lower():
        return RAW_LEDGER
    for row in grid:
        if not row:
            continue
        first = _clean(row[0])
        if any(marker in first for marker in _RAW_LEDGER_MARKERS):
            return RAW_LEDGER
    return STANDARD


# ══════════════════════════════════════════════════════════════════════════════
# Opening balance detection
# ══════════════════════════════════════════════════════════════════════════════

BalanceFinder = Callable[[RawGrid, int, date], Tuple[Optional[OpeningBalance], int]]

_LEDGER_BALANCE_KW = ("opening balance", "opening", "balance")
_DIGITS_COMMA_DIGITS = re.compile(r"^\d+,\d+$")
# Thousands-shaped amounts only
_AMOUNT_IN_CELL = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+,\d+(?:\.\d+)?")
_DMY_IN_CELL = re.compile(r"(\d{2})/(\d{2})/(\d{4})")

_ISO_IN_TEXT = re.compile(r"\d{4}-\d{2}-\d{2}")
_NUMBER_IN_TEXT = re.compile(r"\d[\d,]*\.?\d*")


def _looks_like_thousands(cell: str) -> bool:
    return "," in cell and ("." in cell or bool(_DIGITS_COMMA_DIGITS.match(cell)))


def _balance_date_from_row(row: List[Any]) -> Optional[str]:
    for v in row:
        if isinstance(v, (datetime, date)) and v is not pd.NaT:
            return v.strftime("%Y-%m-%d")
        m = _DMY_IN_CELL.search(_clean(v))
        if m:
            d, mo, y = m.groups()
            return f"{y}-{mo}-{d}"
    return None


def _find_ledger_balance(rows: RawGrid, limit: int, today: date) -> Tuple[Optional[OpeningBalance], int]:
    """Balance keyword row holding a thousands-formatted amount cell."""
    for i, row in enumerate(rows[:limit]):
        if not row:
            continue
        text = _row_text(row).lower()
        if not any(kw in text for kw in _LEDGER_BALANCE_KW):
            continue

        amount_cell = next(
            (c for c in (_clean(v) for v in row) if c and _looks_like_thousands(c)),
            None,
        )
        if amount_cell is None:
            continue
        m = _AMOUNT_IN_CELL.search(amount_cell)
        if not m:
            continue

        balance = OpeningBalance(
            date=_balance_date_from_row(row) or today.isoformat(),
            amount=float(m.group(0).replace(",", "")),
        )
        logger.info("Opening balance %.2f on %s (data row %d)", balance.amount, balance.date, i + 1)
        return balance, i + 1
    return None, 0


def _find_standard_balance(rows: RawGrid, limit: int, today: date) -> Tuple[Optional[OpeningBalance], int]:
    """Balance keyword row with an ISO date and a number anywhere in its text."""
    for i, row in enumerate(rows[:limit]):
        if not row:
            continue
        text = _row_text(row).lower()
        if "opening" not in text and "balance" not in text:
            continue

        date_match = _ISO_IN_TEXT.search(text)
        if not date_match:
            continue
        amount_match = _NUMBER_IN_TEXT.search(_ISO_IN_TEXT.sub(" ", text, count=1))
        if not amount_match:
            continue

        balance = OpeningBalance(
            date=date_match.group(0),
            amount=float(amount_match.group(0).replace(",", "")),
        )
        logger.info("Opening balance %.2f on %s (data row %d)", balance.amount, balance.date, i + 1)
        return balance, i + 1
    return None, 0


# ══════════════════════════════════════════════════════════════════════════════
# Format profiles
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FormatProfile:
    """Everything that differs between the supported sheet layouts."""

    name: str
    balance_finder: BalanceFinder
    balance_scan_rows: int
    header_rows: int = 3
    strip_thousands: bool = True          # '1,234.50' → 1234.5 instead of 1.0
    normalize_dates: bool = True          # False keeps the date cell text as-is
    sales_in_debit_column: bool = False   # column 5 may hold a "SALES - ..." narration
    narration_fallback: bool = False      # composite → narration when column 8 is blank
    skip_summary_rows: bool = False       # repeated headers and totals
    fail_when_empty: bool = False
    booking_status: str = "Pending"
    payment_status: str = "Pending"


RAW_LEDGER_PROFILE = FormatProfile(
    name=RAW_LEDGER,
    balance_finder=_find_ledger_balance,
    balance_scan_rows=10,
    strip_thousands=True,
    normalize_dates=True,
    sales_in_debit_column=True,
    narration_fallback=True,
    skip_summary_rows=True,
    fail_when_empty=False,
    booking_status="Pending",
    payment_status="Unpaid",
)

# Standard sheets keep the unstripped amount parse: '1,234.50' reads as 1.0.
STANDARD_PROFILE = FormatProfile(
    name=STANDARD,
    balance_finder=_find_standard_balance,
    balance_scan_rows=5,
    strip_thousands=False,
    normalize_dates=False,
    sales_in_debit_column=False,
    narration_fallback=False,
    skip_summary_rows=False,
    fail_when_empty=True,
    booking_status="Pending",
    payment_status="Pending",
)

PROFILES: Dict[str, FormatProfile] = {
    RAW_LEDGER: RAW_LEDGER_PROFILE,
    STANDARD: STANDARD_PROFILE,
}


# ══════════════════════════════════════════════════════════════════════════════
# Row processing
# ══════════════════════════════════════════════════════════════════════════════

_COLUMNS = 8
_MIN_CELLS = 4


def _travel_fields(profile: FormatProfile, narration: Any, debit_cell: Any,
                   composite: Any, has_sales: bool) -> TravelFields:
    if has_sales:
        return parse_narration(_clean(debit_cell))
    if not profile.narration_fallback:
        return parse_composite(composite)
    composite_text = _clean(composite)
    if composite_text:
        return parse_composite(composite_text)
    return parse_narration(_clean(narration))


def _build_entry(row: List[Any], profile: FormatProfile, today: date) -> Tuple[Optional[ParsedEntry], str]:
    """Return (entry, '') for an accepted row or (None, reason) for a rejected one."""
    if len(row) < _MIN_CELLS:
        return None, "fewer than 4 cells"

    text = _row_text(row).lower()
    if profile.skip_summary_rows and all(kw in text for kw in ("date", "voucher", "narration")):
        return None, "repeated header row"

    (date_cell, voucher, reference, narration,
     debit_cell, credit_cell, balance_cell, composite) = _pad(row, _COLUMNS)

    if _is_missing(date_cell) or _is_missing(voucher):
        return None, "missing date or voucher"
    if profile.skip_summary_rows and "total" in text:
        return None, "total row"

    if profile.normalize_dates:
        entry_date = normalize_date(date_cell)
        if not entry_date:
            return None, f"invalid date {_clean(date_cell)!r}"
    else:
        entry_date = _clean(date_cell)

    has_sales = profile.sales_in_debit_column and "SALES" in _clean(debit_cell).upper()
    fields = _travel_fields(profile, narration, debit_cell, composite, has_sales)

    strip = profile.strip_thousands
    return ParsedEntry(
        date=entry_date,
        voucher=_clean(voucher),
        reference=_clean(reference) or None,
        narration=_clean(narration) or None,
        debit=None if has_sales else _to_amount(debit_cell, strip),
        credit=_to_amount(credit_cell, strip),
        balance=_to_amount(balance_cell, strip),
        customer_name=fields.customer_name,
        route=fields.route,
        pnr=fields.pnr,
        flying_date=fields.flying_date,
        flying_status=classify_flying_status(fields.flying_date, today),
        customer_rate=0,
        company_rate=0,
        profit=0,
        booking_status=profile.booking_status,
        payment_status=profile.payment_status,
    ), ""


def process(
    grid: RawGrid,
    filename: str = "",
    reference_date: Optional[date] = None,
    profile: Optional[FormatProfile] = None,
) -> ParseResult:
    """
    Parse a raw spreadsheet grid into booking entries.

    Parameters
    ----------
    grid           : rows of untyped cells, first sheet, header rows included
    filename       : original upload name (used for format detection)
    reference_date : "today" for balance defaults and flying status
    profile        : force a layout instead of detecting one

    Returns
    -------
    ParseResult with the opening balance (or None), accepted entries and a
    report of skipped rows. Raises LedgerParseError only when the layout
    requires data rows and none remain after the header skip.
    """
    today = reference_date or date.today()
    if profile is None:
        profile = PROFILES[classify_sheet(grid, filename)]

    rows = [list(r) if r else [] for r in grid[profile.header_rows:]]
    if not rows and profile.fail_when_empty:
        raise LedgerParseError("No data found after removing header rows")

    opening_balance, start = profile.balance_finder(rows, profile.balance_scan_rows, today)
    result = ParseResult(sheet_format=profile.name, opening_balance=opening_balance)

    for offset, row in enumerate(rows[start:]):
        row_number = profile.header_rows + start + offset + 1
        entry, reason = _build_entry(row, profile, today)
        if entry is not None:
            result.entries.append(entry)
            continue
        if not any(not _is_blank(v) for v in row):
            continue
        result.skipped_rows.append(SkippedRow(row_number, reason))
        if reason.startswith(("missing", "invalid")):
            logger.warning("Skipping row %d of '%s': %s", row_number, filename, reason)
        else:
            logger.debug("Skipping row %d of '%s': %s", row_number, filename, reason)

    logger.info(
        "Parsed '%s' as %s: %d entries, %d rows skipped",
        filename, profile.name, result.total_records, len(result.skipped_rows),
    )
    return result


# ══════════════════════════════════════════════════════════════════════════════
# Loader — accepts path, bytes, BytesIO, or base64 string
# ══════════════════════════════════════════════════════════════════════════════

_EXCEL_EXTS = (".xlsx", ".xls", ".xlsm")
_CSV_EXTS = (".csv",)
ALLOWED_EXTENSIONS = _CSV_EXTS + (".xls", ".xlsx")


def _trim_row(values: List[Any]) -> List[Any]:
    row = [None if _is_blank(v) else v for v in values]
    while row and row[-1] is None:
        row.pop()
    return row


def _read_bytes(source: Union[str, bytes, io.IOBase]) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, str):
        with open(source, "rb") as fh:
            return fh.read()
    return source.read()


def _csv_grid(raw: bytes) -> RawGrid:
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")
    return [_trim_row(r) for r in csv.reader(io.StringIO(text))]


def _excel_grid(raw: bytes) -> RawGrid:
    df = pd.read_excel(io.BytesIO(raw), sheet_name=0, header=None, dtype=object)
    df = df.astype(object).where(pd.notna(df), None)
    return [_trim_row(list(values)) for values in df.itertuples(index=False, name=None)]


def load_grid(source: Union[str, bytes, io.IOBase], filename: str = "") -> RawGrid:
    """
    Read the first sheet of a CSV/XLS/XLSX upload into a RawGrid.
    Trailing empty cells are trimmed from every row; NaN becomes None.
    Raises LedgerParseError when the file cannot be read.
    """
    name = filename or (source if isinstance(source, str) else "")
    ext = os.path.splitext(name.lower())[1]
    try:
        raw = _read_bytes(source)
    except OSError as e:
        raise LedgerParseError(f"Could not read '{name}': {e}") from e
    if not raw:
        raise LedgerParseError("Empty file uploaded")

    try:
        if ext in _CSV_EXTS:
            return _csv_grid(raw)
        if ext in _EXCEL_EXTS:
            return _excel_grid(raw)
        try:
            return _excel_grid(raw)
        except (ValueError, OSError):
            logger.info("'%s' is not a workbook, reading as CSV", name)
            return _csv_grid(raw)
    except LedgerParseError:
        raise
    except Exception as e:
        logger.error("Failed to load workbook '%s': %s", name, e)
        raise LedgerParseError(f"Could not load '{name}' — file may be corrupt or unsupported.") from e


def parse_file(
    source: Union[str, bytes, io.IOBase],
    filename: str = "",
    is_base64: bool = False,
    reference_date: Optional[date] = None,
) -> ParseResult:
    """
    Load and parse an uploaded ledger.

    Parameters
    ----------
    source    : file path (str), raw bytes, BytesIO, or base64-encoded string
    filename  : original file name (format detection and extension sniffing)
    is_base64 : True when ``source`` is a base64-encoded string
    """
    if is_base64 and isinstance(source, str):
        if "," in source and source.startswith("data:"):
            source = source.split(",", 1)[1]
        try:
            source = base64.b64decode(source)
        except ValueError as e:
            raise LedgerParseError(f"base64 decode failed: {e}") from e

    grid = load_grid(source, filename)
    return process(grid, filename or (source if isinstance(source, str) else ""), reference_date)
