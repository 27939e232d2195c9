import io
import unittest
from datetime import date

import pandas as pd

from travel_report import (
    calculate_dashboard_metrics,
    export_to_excel,
    filter_travel_data,
    get_flight_status,
    prepare_chart_data,
    sort_travel_data,
)

REF = date(2024, 12, 6)


def sample_rows():
    return [
        {
            "id": "a", "date": "2024-01-05", "voucher": "SV-001", "customerName": "Ali",
            "route": "DXB-LHE", "pnr": "PNR54321", "flyingDate": "2024-12-01",
            "debit": 1000.0, "customerRate": 1200, "companyRate": 1000, "profit": 200,
            "bookingStatus": "Confirmed", "createdAt": "2024-01-05T10:00:00",
        },
        {
            "id": "b", "date": "2024-02-10", "voucher": "SV-002", "customerName": "Sara Khan",
            "route": "KHI-JED", "pnr": "AB12CD", "flyingDate": "2025-01-15",
            "debit": 3000.0, "customerRate": 0, "companyRate": 0, "profit": 0,
            "bookingStatus": "Pending", "createdAt": "2024-02-10T10:00:00",
        },
        {
            "id": "c", "date": "2024-03-01", "voucher": "RV-003", "customerName": None,
            "route": None, "pnr": None, "flyingDate": "2025-02-01", "flyingStatus": "Cancelled",
            "debit": None, "profit": -50, "bookingStatus": "Cancelled", "createdAt": None,
        },
    ]


class TestFlightStatus(unittest.TestCase):
    def test_statuses(self):
        a, b, c = sample_rows()
        self.assertEqual(get_flight_status(a, REF), "Gone")
        self.assertEqual(get_flight_status(b, REF), "Coming")
        self.assertEqual(get_flight_status(c, REF), "Cancelled")

    def test_past_flight_is_gone_even_if_cancelled(self):
        row = {"flyingDate": "2024-11-30", "flyingStatus": "Cancelled"}
        self.assertEqual(get_flight_status(row, REF), "Gone")

    def test_missing_or_unreadable_date(self):
        self.assertEqual(get_flight_status({}, REF), "Coming")
        self.assertEqual(get_flight_status({"flyingDate": "next week"}, REF), "Coming")
        self.assertEqual(get_flight_status({"flyingDate": "May"}, REF), "Coming")


class TestMetrics(unittest.TestCase):
    def test_dashboard_metrics(self):
        metrics = calculate_dashboard_metrics(sample_rows())
        self.assertEqual(metrics["totalBookings"], 3)
        self.assertEqual(metrics["totalRevenue"], 4000.0)
        self.assertEqual(metrics["totalProfit"], 150.0)
        self.assertEqual(metrics["activeAgents"], 2)
        self.assertAlmostEqual(metrics["profitMargin"], 3.75)
        self.assertEqual(metrics["bookingStatus"], {"confirmed": 1, "pending": 1, "cancelled": 1})
        self.assertEqual(metrics["recentActivity"][0]["id"], "b")
        self.assertIn("AB12CD", metrics["recentActivity"][0]["details"])

    def test_empty_metrics(self):
        metrics = calculate_dashboard_metrics([])
        self.assertEqual(metrics["totalBookings"], 0)
        self.assertEqual(metrics["profitMargin"], 0.0)
        self.assertEqual(metrics["recentActivity"], [])

    def test_chart_data(self):
        charts = prepare_chart_data(sample_rows())
        self.assertEqual(charts["monthlyRevenue"], [{"month": "Jan", "customerRate": 1200, "companyRate": 1000}])
        self.assertEqual(charts["profitTrends"], [{"pnr": "PNR54321", "profit": 200.0, "customerName": "Ali"}])
        self.assertEqual(charts["routePerformance"][0], {"route": "KHI-JED", "bookings": 1, "revenue": 3000})
        routes = {r["route"] for r in charts["routePerformance"]}
        self.assertIn("Unknown", routes)
        self.assertEqual(charts["agentPerformance"][0], {"agent": "SV", "bookings": 2, "profit": 200})

    def test_empty_chart_data(self):
        self.assertEqual(prepare_chart_data([])["routePerformance"], [])


class TestFilterAndSort(unittest.TestCase):
    def test_search(self):
        self.assertEqual([r["id"] for r in filter_travel_data(sample_rows(), search="ali")], ["a"])
        self.assertEqual([r["id"] for r in filter_travel_data(sample_rows(), search="JED")], ["b"])

    def test_status(self):
        self.assertEqual([r["id"] for r in filter_travel_data(sample_rows(), status="pending")], ["b"])
        self.assertEqual(len(filter_travel_data(sample_rows(), status="All Status")), 3)

    def test_inclusive_date_range(self):
        rows = filter_travel_data(sample_rows(), start="2024-02-10", end="2024-03-01")
        self.assertEqual([r["id"] for r in rows], ["b", "c"])

    def test_unreadable_dates_fall_outside_range(self):
        rows = sample_rows() + [{"id": "d", "date": "May"}]
        self.assertEqual([r["id"] for r in filter_travel_data(rows, start="2024-01-01")], ["a", "b", "c"])

    def test_sort_missing_last(self):
        rows = sample_rows()
        self.assertEqual([r["id"] for r in sort_travel_data(rows, "debit")], ["a", "b", "c"])
        self.assertEqual([r["id"] for r in sort_travel_data(rows, "debit", descending=True)], ["b", "a", "c"])
        self.assertEqual([r["id"] for r in sort_travel_data(rows, "customerName")], ["a", "b", "c"])


class TestExcelExport(unittest.TestCase):
    def read_back(self, data):
        return pd.read_excel(io.BytesIO(data), sheet_name=None)

    def test_default_sheets(self):
        sheets = self.read_back(export_to_excel(sample_rows(), reference_date=REF))
        self.assertEqual(list(sheets), ["Travel Data", "Summary"])
        table = sheets["Travel Data"]
        self.assertEqual(len(table), 3)
        self.assertIn("Flight Status", table.columns)
        self.assertEqual(list(table["Flight Status"]), ["Gone", "Coming", "Cancelled"])

    def test_status_filter_and_raw_sheet(self):
        sheets = self.read_back(export_to_excel(
            sample_rows(), include_summary=False, include_raw=True,
            status_filter="Coming Only", reference_date=REF,
        ))
        self.assertEqual(list(sheets), ["Travel Data", "Raw Data"])
        self.assertEqual(list(sheets["Travel Data"]["PNR"]), ["AB12CD"])

    def test_date_range(self):
        sheets = self.read_back(export_to_excel(sample_rows(), start="2024-02-01", reference_date=REF))
        self.assertEqual(len(sheets["Travel Data"]), 2)


if __name__ == '__main__':
    unittest.main()
