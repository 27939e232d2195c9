"""
Travel Ledger — Dashboard Metrics & Excel Export
================================================
Summaries over stored travel rows (the camelCase dicts returned by db.py):
headline metrics, chart series, filtering/sorting for the data table and
an Excel workbook export.
"""

import io
import math
from datetime import date, datetime

import numpy as np
import pandas as pd

from ledger_fields import normalize_date


# ─────────────────────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────────────────────

FLIGHT_COMING = "Coming"
FLIGHT_GONE = "Gone"
FLIGHT_CANCELLED = "Cancelled"

STATUS_FILTERS = {
    "Coming Only": FLIGHT_COMING,
    "Gone Only": FLIGHT_GONE,
    "Cancelled Only": FLIGHT_CANCELLED,
}

EXPORT_COLUMNS = [
    ("Date", "date"),
    ("Voucher", "voucher"),
    ("Reference", "reference"),
    ("Narration", "narration"),
    ("Debit", "debit"),
    ("Credit", "credit"),
    ("Balance", "balance"),
    ("Customer Name", "customerName"),
    ("Route", "route"),
    ("PNR", "pnr"),
    ("Flying Date", "flyingDate"),
    ("Customer Rate", "customerRate"),
    ("Company Rate", "companyRate"),
    ("Profit", "profit"),
    ("Payment Status", "paymentStatus"),
]

_NUMERIC_FIELDS = ["debit", "credit", "balance", "customerRate", "companyRate", "profit"]


# ─────────────────────────────────────────────────────────────
# HELPER FUNCTIONS
# ─────────────────────────────────────────────────────────────

def _serialize_value(val):
    """Convert a single value to JSON-serializable form."""
    if val is None:
        return None
    if isinstance(val, (datetime, pd.Timestamp)):
        return val.isoformat()
    if isinstance(val, float):
        if math.isnan(val) or math.isinf(val):
            return None
        return val
    if isinstance(val, (np.integer,)):
        return int(val)
    if isinstance(val, (np.floating,)):
        f = float(val)
        return None if math.isnan(f) else f
    if isinstance(val, (np.bool_,)):
        return bool(val)
    return val


def _frame(rows) -> pd.DataFrame:
    """Rows → DataFrame with numeric columns coerced and missing ones present."""
    df = pd.DataFrame(list(rows))
    for col in _NUMERIC_FIELDS:
        if col not in df.columns:
            df[col] = 0.0
        df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0)
    for col in ("date", "voucher", "route", "pnr", "customerName", "bookingStatus", "createdAt"):
        if col not in df.columns:
            df[col] = None
    return df


def _agent_of(voucher) -> str:
    """Voucher prefix before the first '-' identifies the booking agent."""
    if not voucher:
        return ""
    return str(voucher).split("-")[0]


def _as_date(value):
    iso = normalize_date(value)
    if not iso:
        return None
    try:
        return date.fromisoformat(iso)
    except ValueError:
        return None


# ─────────────────────────────────────────────────────────────
# FLIGHT STATUS
# ─────────────────────────────────────────────────────────────

def get_flight_status(row, reference_date=None) -> str:
    """Coming / Gone / Cancelled as shown in the data table.

    A flying date on or before the reference day is always Gone; a reviewer
    can only mark future flights Cancelled.
    """
    flying = (row.get("flyingDate") or "").strip()
    if not flying:
        return FLIGHT_COMING
    flying_day = _as_date(flying)
    if flying_day is None:
        return FLIGHT_COMING
    today = reference_date or date.today()
    if flying_day <= today:
        return FLIGHT_GONE
    return FLIGHT_CANCELLED if row.get("flyingStatus") == FLIGHT_CANCELLED else FLIGHT_COMING


# ─────────────────────────────────────────────────────────────
# METRICS
# ─────────────────────────────────────────────────────────────

def calculate_dashboard_metrics(rows) -> dict:
    """Headline numbers for the summary cards."""
    rows = list(rows or [])
    if not rows:
        return {
            "totalBookings": 0,
            "totalRevenue": 0.0,
            "totalProfit": 0.0,
            "activeAgents": 0,
            "profitMargin": 0.0,
            "recentActivity": [],
            "bookingStatus": {"confirmed": 0, "pending": 0, "cancelled": 0},
        }

    df = _frame(rows)
    total_revenue = float(df["debit"].sum())
    total_profit = float(df["profit"].sum())
    agents = {a for a in df["voucher"].map(_agent_of) if a}

    statuses = df["bookingStatus"].fillna("pending").astype(str).str.lower()
    booking_status = {
        "confirmed": int((statuses == "confirmed").sum()),
        "cancelled": int((statuses == "cancelled").sum()),
    }
    booking_status["pending"] = len(df) - booking_status["confirmed"] - booking_status["cancelled"]

    recent = df.sort_values("createdAt", ascending=False, na_position="last").head(5)
    activity = [
        {
            "id": _serialize_value(r.get("id")),
            "type": "booking",
            "message": "New booking processed",
            "details": f"PNR: {r.get('pnr') or 'N/A'} - {r.get('customerName') or 'Unknown'}",
            "timestamp": _serialize_value(r.get("createdAt")),
        }
        for r in recent.to_dict("records")
    ]

    return {
        "totalBookings": int(len(df)),
        "totalRevenue": total_revenue,
        "totalProfit": total_profit,
        "activeAgents": len(agents),
        "profitMargin": (total_profit / total_revenue * 100) if total_revenue > 0 else 0.0,
        "recentActivity": activity,
        "bookingStatus": booking_status,
    }


def prepare_chart_data(rows) -> dict:
    """Series for the analytics charts."""
    rows = list(rows or [])
    if not rows:
        return {"monthlyRevenue": [], "profitTrends": [], "routePerformance": [], "agentPerformance": []}

    df = _frame(rows)

    # Monthly average rates (only rows a reviewer has priced)
    days = pd.to_datetime(df["date"].map(normalize_date), errors="coerce")
    priced = df.assign(month=days.dt.strftime("%b"))
    priced = priced[(priced["customerRate"] > 0) | (priced["companyRate"] > 0)]
    priced = priced[priced["month"].notna()]
    monthly = []
    if not priced.empty:
        grouped = priced.groupby("month", sort=False)[["customerRate", "companyRate"]].mean()
        for month, vals in grouped.iterrows():
            monthly.append({
                "month": month,
                "customerRate": int(round(vals["customerRate"])),
                "companyRate": int(round(vals["companyRate"])),
            })

    # Top 20 profitable PNRs
    profitable = df[df["profit"] > 0].sort_values("profit", ascending=False).head(20)
    profit_trends = [
        {
            "pnr": r.get("pnr") or "N/A",
            "profit": float(r["profit"]),
            "customerName": r.get("customerName") or "Unknown",
        }
        for r in profitable.to_dict("records")
    ]

    # Top 10 routes by revenue
    routes = (
        df.assign(route=df["route"].fillna("Unknown").replace("", "Unknown"))
        .groupby("route")
        .agg(bookings=("route", "size"), revenue=("debit", "sum"))
        .sort_values("revenue", ascending=False)
        .head(10)
    )
    route_perf = [
        {"route": route, "bookings": int(vals["bookings"]), "revenue": int(round(vals["revenue"]))}
        for route, vals in routes.iterrows()
    ]

    # Top 10 agents by profit
    agents = (
        df.assign(agent=df["voucher"].map(_agent_of).replace("", "Unknown"))
        .groupby("agent")
        .agg(bookings=("agent", "size"), profit=("profit", "sum"))
        .sort_values("profit", ascending=False)
        .head(10)
    )
    agent_perf = [
        {"agent": agent, "bookings": int(vals["bookings"]), "profit": int(round(vals["profit"]))}
        for agent, vals in agents.iterrows()
    ]

    return {
        "monthlyRevenue": monthly,
        "profitTrends": profit_trends,
        "routePerformance": route_perf,
        "agentPerformance": agent_perf,
    }


# ─────────────────────────────────────────────────────────────
# TABLE FILTERING / SORTING
# ─────────────────────────────────────────────────────────────

def filter_travel_data(rows, search=None, status=None, start=None, end=None) -> list:
    """Free-text search, booking-status filter and inclusive date range."""
    out = list(rows or [])

    if search:
        needle = search.lower()
        out = [
            r for r in out
            if any(needle in str(r.get(k) or "").lower()
                   for k in ("customerName", "pnr", "route", "voucher"))
        ]

    if status and status != "All Status":
        out = [r for r in out if str(r.get("bookingStatus") or "").lower() == status.lower()]

    if start or end:
        lo = _as_date(start) if start else None
        hi = _as_date(end) if end else None
        kept = []
        for r in out:
            day = _as_date(r.get("date"))
            if day is None:
                continue
            if lo and day < lo:
                continue
            if hi and day > hi:
                continue
            kept.append(r)
        out = kept

    return out


def sort_travel_data(rows, sort_by, descending=False) -> list:
    """Stable sort on one field; missing values always sort last."""
    present = [r for r in rows if r.get(sort_by) is not None]
    missing = [r for r in rows if r.get(sort_by) is None]

    def key(r):
        v = r.get(sort_by)
        if isinstance(v, str):
            return (1, v.lower())
        return (0, v)

    present.sort(key=key, reverse=descending)
    return present + missing


# ─────────────────────────────────────────────────────────────
# EXCEL EXPORT
# ─────────────────────────────────────────────────────────────

def export_to_excel(
    rows,
    include_summary=True,
    include_raw=False,
    status_filter=None,
    start=None,
    end=None,
    reference_date=None,
) -> bytes:
    """Build an .xlsx export and return it as bytes."""
    data = filter_travel_data(rows, start=start, end=end)

    target = STATUS_FILTERS.get(status_filter or "")
    if target:
        data = [r for r in data if get_flight_status(r, reference_date) == target]

    table = pd.DataFrame(
        [
            {
                **{label: r.get(key) for label, key in EXPORT_COLUMNS},
                "Flight Status": get_flight_status(r, reference_date),
            }
            for r in data
        ],
        columns=[label for label, _ in EXPORT_COLUMNS] + ["Flight Status"],
    )

    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        table.to_excel(writer, sheet_name="Travel Data", index=False)

        if include_summary:
            metrics = calculate_dashboard_metrics(data)
            summary = pd.DataFrame(
                [
                    ("Total Bookings", metrics["totalBookings"]),
                    ("Total Revenue", f"{metrics['totalRevenue']:.2f}"),
                    ("Total Profit", f"{metrics['totalProfit']:.2f}"),
                    ("Profit Margin", f"{metrics['profitMargin']:.2f}%"),
                    ("Export Date", (reference_date or date.today()).strftime("%d/%m/%Y")),
                ],
                columns=["Metric", "Value"],
            )
            summary.to_excel(writer, sheet_name="Summary", index=False)

        if include_raw:
            pd.DataFrame(data).to_excel(writer, sheet_name="Raw Data", index=False)

    return buf.getvalue()
