import unittest
from datetime import date

from pdf_export import _fmt_currency, _safe, generate_pdf_report
from test_travel_report import sample_rows


class TestPdfExport(unittest.TestCase):
    def test_report_bytes(self):
        pdf = generate_pdf_report(
            sample_rows(),
            opening_balance={"date": "2024-01-01", "amount": 1234.56},
            source_file="Ledger — January.xlsx",
            reference_date=date(2024, 12, 6),
        )
        self.assertIsInstance(pdf, bytes)
        self.assertTrue(pdf.startswith(b"%PDF"))

    def test_row_cap(self):
        rows = sample_rows() * 20
        pdf = generate_pdf_report(rows, max_rows=10, reference_date=date(2024, 12, 6))
        self.assertTrue(pdf.startswith(b"%PDF"))

    def test_empty_session(self):
        self.assertTrue(generate_pdf_report([]).startswith(b"%PDF"))

    def test_helpers(self):
        self.assertEqual(_safe("A — B"), "A - B")
        self.assertEqual(_safe(None), "-")
        self.assertEqual(_fmt_currency(-1500), "-PKR 1,500.00")
        self.assertEqual(_fmt_currency(None), "-")


if __name__ == '__main__':
    unittest.main()
