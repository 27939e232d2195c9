"""
PDF Export Module for the Travel Ledger Dashboard
Generates a printable summary of one upload session.
"""

import pandas as pd
from datetime import datetime
from fpdf import FPDF

from travel_report import calculate_dashboard_metrics, get_flight_status


# Core font glyphs are latin-1 only
_ASCII_SUBSTITUTES = str.maketrans({
    "\u2014": "-",      # em dash
    "\u2013": "-",      # en dash
    "\u2018": "'",
    "\u2019": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u2026": "...",
    "\u00a0": " ",      # non-breaking space
})


def _safe(text) -> str:
    """Cell text for Helvetica: None becomes '-', unsupported glyphs '?'."""
    if text is None:
        return "-"
    return str(text).translate(_ASCII_SUBSTITUTES).encode("latin-1", "replace").decode("latin-1")


def _fmt_currency(val, currency_symbol: str = "PKR") -> str:
    """Format currency value for PDF display."""
    if val is None or pd.isna(val):
        return "-"
    try:
        val = float(val)
        sign = "-" if val < 0 else ""
        return f"{sign}{currency_symbol} {abs(val):,.2f}"
    except (ValueError, TypeError):
        return "-"


def _fmt_number(val) -> str:
    if val is None or pd.isna(val):
        return "-"
    try:
        return f"{int(val):,}"
    except (ValueError, TypeError):
        return _safe(str(val))


class TravelPDFReport(FPDF):
    """Landscape A4 report with a dark title bar and page footer."""

    NAVY = (16, 6, 159)
    DARK = (12, 0, 51)
    WHITE = (255, 255, 255)
    RED = (211, 47, 47)
    GREEN = (46, 125, 50)
    LIGHT = (232, 232, 238)

    def __init__(self):
        super().__init__(orientation='L', unit='mm', format='A4')
        self.set_auto_page_break(auto=True, margin=15)
        self.add_page()

    def header(self):
        """Title bar is drawn by generate_pdf_report on the first page only."""
        pass

    def footer(self):
        self.set_y(-15)
        self.set_font('Helvetica', 'I', 8)
        self.set_text_color(*self.NAVY)
        self.cell(0, 10, f'Travel Ledger Report - page {self.page_no()}', 0, 0, 'C')

    def section_title(self, title: str):
        self.set_font('Helvetica', 'B', 12)
        self.set_text_color(*self.NAVY)
        self.cell(0, 8, title, 0, 1)
        self.set_draw_color(*self.NAVY)
        self.line(10, self.get_y(), 287, self.get_y())
        self.ln(3)

    def table_header(self, headers, widths):
        self.set_fill_color(*self.NAVY)
        self.set_text_color(*self.WHITE)
        self.set_font('Helvetica', 'B', 8)
        for header, width in zip(headers, widths):
            self.cell(width, 7, header, 1, 0, 'C', fill=True)
        self.ln()


def generate_pdf_report(
    rows: list,
    opening_balance: dict = None,
    source_file: str = None,
    currency_symbol: str = "PKR",
    reference_date=None,
    max_rows: int = 100,
) -> bytes:
    """
    Generate the session PDF report and return it as bytes.

    Args:
        rows: Travel rows (camelCase dicts) of one upload session
        opening_balance: {"date", "amount"} or None
        source_file: Uploaded file name shown in the title area
        currency_symbol: Currency display symbol
        reference_date: "Today" for flight status; defaults to the current date
        max_rows: Entry register row cap

    Returns:
        bytes: PDF file content
    """
    metrics = calculate_dashboard_metrics(rows)
    pdf = TravelPDFReport()

    # ========== TITLE BAR ==========
    pdf.set_fill_color(*TravelPDFReport.DARK)
    pdf.set_text_color(*TravelPDFReport.WHITE)
    pdf.set_font('Helvetica', 'B', 16)
    pdf.cell(0, 12, '', 0, 1, fill=True)
    pdf.set_xy(10, 10)
    pdf.cell(80, 12, 'TRAVEL LEDGER', 0, 0, 'L')
    pdf.set_font('Helvetica', 'B', 14)
    pdf.cell(0, 12, 'Upload Summary Report', 0, 0, 'C')
    pdf.set_font('Helvetica', '', 10)
    pdf.cell(-80, 12, datetime.now().strftime("%d/%m/%Y %H:%M"), 0, 1, 'R')
    pdf.ln(5)

    if source_file:
        pdf.set_font('Helvetica', '', 9)
        pdf.set_text_color(0, 0, 0)
        pdf.cell(0, 6, f'Source file: {_safe(source_file)}', 0, 1)
    if opening_balance:
        pdf.set_font('Helvetica', '', 9)
        pdf.set_text_color(0, 0, 0)
        pdf.cell(0, 6, 'Opening balance: {} on {}'.format(
            _fmt_currency(opening_balance.get("amount"), currency_symbol),
            _safe(opening_balance.get("date")),
        ), 0, 1)
    pdf.ln(3)

    # ========== KPI SUMMARY ==========
    pdf.section_title('Key Figures')

    kpis = [
        ("Total Bookings", metrics["totalBookings"], None),
        ("Total Revenue", metrics["totalRevenue"], None),
        ("Total Profit", metrics["totalProfit"],
         TravelPDFReport.RED if metrics["totalProfit"] < 0 else TravelPDFReport.GREEN),
        ("Profit Margin", metrics["profitMargin"], None),
        ("Active Agents", metrics["activeAgents"], None),
        ("Pending Bookings", metrics["bookingStatus"]["pending"], None),
    ]

    box_width = 90
    box_height = 20
    y_start = pdf.get_y()

    for i, (label, value, color) in enumerate(kpis):
        x = 10 + (i % 3) * box_width
        y = y_start + (i // 3) * (box_height + 3)

        pdf.set_draw_color(*TravelPDFReport.NAVY)
        pdf.rect(x, y, box_width - 3, box_height)

        pdf.set_xy(x + 2, y + 3)
        pdf.set_font('Helvetica', 'B', 9)
        pdf.set_text_color(80, 80, 80)
        pdf.cell(box_width - 7, 5, label, 0, 0)

        pdf.set_xy(x + 2, y + 10)
        pdf.set_font('Helvetica', 'B', 12)
        pdf.set_text_color(*(color or TravelPDFReport.NAVY))

        if label in ("Total Bookings", "Active Agents", "Pending Bookings"):
            val_str = _fmt_number(value)
        elif label == "Profit Margin":
            val_str = f"{value:.2f}%"
        else:
            val_str = _fmt_currency(value, currency_symbol)
        pdf.cell(box_width - 7, 8, val_str, 0, 0)

    pdf.set_xy(10, y_start + 2 * (box_height + 3) + 5)

    # ========== ROUTE SUMMARY ==========
    df = pd.DataFrame(list(rows)) if rows else pd.DataFrame(columns=["route", "debit"])
    if not df.empty:
        pdf.section_title('Routes')
        route_df = df.assign(
            route=df.get("route", pd.Series(dtype=object)).fillna("Unknown"),
            debit=pd.to_numeric(df.get("debit", pd.Series(dtype=float)), errors="coerce").fillna(0.0),
        )
        summary = (
            route_df.groupby("route")
            .agg(bookings=("route", "size"), revenue=("debit", "sum"))
            .sort_values("revenue", ascending=False)
            .head(10)
        )
        widths = [70, 35, 45]
        pdf.table_header(["Route", "Bookings", "Revenue"], widths)
        pdf.set_text_color(0, 0, 0)
        pdf.set_font('Helvetica', '', 8)
        for row_num, (route, vals) in enumerate(summary.iterrows()):
            pdf.set_fill_color(*(TravelPDFReport.WHITE if row_num % 2 == 0 else TravelPDFReport.LIGHT))
            pdf.cell(widths[0], 6, _safe(route)[:35], 1, 0, 'L', fill=True)
            pdf.cell(widths[1], 6, _fmt_number(vals["bookings"]), 1, 0, 'C', fill=True)
            pdf.cell(widths[2], 6, _fmt_currency(vals["revenue"], currency_symbol), 1, 0, 'R', fill=True)
            pdf.ln()

    # ========== ENTRY REGISTER ==========
    if rows:
        pdf.add_page()
        pdf.section_title('Entry Register')

        headers = ["Date", "Voucher", "Customer", "Route", "PNR", "Flying Date", "Debit", "Credit", "Flight"]
        widths = [22, 28, 55, 35, 22, 24, 32, 32, 20]
        pdf.table_header(headers, widths)
        pdf.set_font('Helvetica', '', 7)

        for row_num, r in enumerate(list(rows)[:max_rows]):
            if pdf.get_y() > 180:
                pdf.add_page()
                pdf.table_header(headers, widths)
                pdf.set_font('Helvetica', '', 7)

            pdf.set_fill_color(*(TravelPDFReport.WHITE if row_num % 2 == 0 else TravelPDFReport.LIGHT))
            pdf.set_text_color(0, 0, 0)
            pdf.cell(widths[0], 6, _safe(r.get("date") or "-")[:12], 1, 0, 'C', fill=True)
            pdf.cell(widths[1], 6, _safe(r.get("voucher") or "-")[:16], 1, 0, 'L', fill=True)
            pdf.cell(widths[2], 6, _safe(r.get("customerName") or "-")[:32], 1, 0, 'L', fill=True)
            pdf.cell(widths[3], 6, _safe(r.get("route") or "-")[:20], 1, 0, 'L', fill=True)
            pdf.cell(widths[4], 6, _safe(r.get("pnr") or "-")[:10], 1, 0, 'L', fill=True)
            pdf.cell(widths[5], 6, _safe(r.get("flyingDate") or "-")[:12], 1, 0, 'C', fill=True)
            pdf.cell(widths[6], 6, _fmt_currency(r.get("debit"), currency_symbol), 1, 0, 'R', fill=True)
            pdf.cell(widths[7], 6, _fmt_currency(r.get("credit"), currency_symbol), 1, 0, 'R', fill=True)
            pdf.cell(widths[8], 6, get_flight_status(r, reference_date), 1, 0, 'C', fill=True)
            pdf.ln()

        if len(rows) > max_rows:
            pdf.ln(3)
            pdf.set_font('Helvetica', 'I', 8)
            pdf.set_text_color(100, 100, 100)
            pdf.cell(0, 5, f'Showing first {max_rows} of {len(rows)} entries', 0, 1, 'L')

    return bytes(pdf.output())
