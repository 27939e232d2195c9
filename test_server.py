import base64
import io
import unittest
from unittest.mock import patch

import server
from server import app
from test_ledger_parser import RAW_CSV
from test_travel_report import sample_rows

SESSION = {"id": "sess-1", "filename": "ledger.csv", "openingBalance": None, "totalRecords": "1"}


class TestUpload(unittest.TestCase):
    def setUp(self):
        app.testing = True
        self.client = app.test_client()

    def post_file(self, content, name):
        return self.client.post(
            "/api/upload",
            data={"file": (io.BytesIO(content), name)},
            content_type="multipart/form-data",
        )

    @patch("server.create_travel_data_batch", return_value=1)
    @patch("server.create_upload_session", return_value=SESSION)
    def test_upload_csv(self, create_session, create_batch):
        response = self.post_file(RAW_CSV, "ledger.csv")
        self.assertEqual(response.status_code, 200)
        body = response.json
        self.assertEqual(body["sessionId"], "sess-1")
        self.assertEqual(body["sheetFormat"], "raw-ledger")
        self.assertEqual(body["totalRecords"], 1)
        self.assertEqual(body["openingBalance"], {"date": "2024-01-01", "amount": 1234.56})
        self.assertEqual(body["entries"][0]["customerName"], "SULEMAN SAFDAR")

        create_session.assert_called_once_with(
            "ledger.csv", {"date": "2024-01-01", "amount": 1234.56}, 1)
        session_id, entries = create_batch.call_args[0]
        self.assertEqual(session_id, "sess-1")
        self.assertEqual(entries[0]["pnr"], "94A63T")

    @patch("server.create_travel_data_batch", return_value=1)
    @patch("server.create_upload_session", return_value=SESSION)
    def test_upload_base64_json(self, create_session, create_batch):
        payload = {
            "name": "ledger.csv",
            "data": "data:text/csv;base64," + base64.b64encode(RAW_CSV).decode("utf-8"),
        }
        response = self.client.post("/api/upload", json=payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json["totalRecords"], 1)

    def test_no_file(self):
        response = self.client.post("/api/upload", data={}, content_type="multipart/form-data")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json["code"], "NO_FILE")

    def test_invalid_file_type(self):
        response = self.post_file(b"%PDF-1.4", "ledger.pdf")
        self.assertEqual(response.status_code, 415)
        self.assertEqual(response.json["code"], "INVALID_FILE_TYPE")

    def test_file_too_large(self):
        with patch.object(server, "MAX_UPLOAD_BYTES", 10):
            response = self.post_file(RAW_CSV, "ledger.csv")
        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.json["code"], "FILE_TOO_LARGE")

    def test_empty_file(self):
        response = self.post_file(b"", "ledger.csv")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json["code"], "PROCESSING_ERROR")

    def test_standard_sheet_without_rows(self):
        response = self.post_file(b"Travel Sheet\nPrepared by\nJanuary\n", "sheet.csv")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json["code"], "PROCESSING_ERROR")
        self.assertIn("No data found", response.json["message"])

    @patch("server.create_upload_session", return_value=None)
    def test_storage_failure(self, _create_session):
        response = self.post_file(RAW_CSV, "ledger.csv")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json["code"], "STORAGE_ERROR")


class TestTravelDataRoutes(unittest.TestCase):
    def setUp(self):
        app.testing = True
        self.client = app.test_client()

    @patch("server.get_travel_data_by_session")
    def test_list_filtered_and_sorted(self, get_rows):
        get_rows.return_value = sample_rows()
        response = self.client.get("/api/travel-data/sess-1?search=ali")
        self.assertEqual([r["id"] for r in response.json], ["a"])

        response = self.client.get("/api/travel-data/sess-1?sortBy=debit&order=desc")
        self.assertEqual([r["id"] for r in response.json], ["b", "a", "c"])
        get_rows.assert_called_with("sess-1")

    @patch("server.get_travel_data_by_session", return_value=None)
    def test_list_storage_failure(self, _get_rows):
        response = self.client.get("/api/travel-data/sess-1")
        self.assertEqual(response.status_code, 500)

    @patch("server.update_travel_data", side_effect=lambda record_id, updates: {"id": record_id, **updates})
    def test_patch_computes_profit(self, update):
        response = self.client.patch(
            "/api/travel-data/row-1",
            json={"customerRate": "1200", "companyRate": 1000, "bookingStatus": "Confirmed", "voucher": "X"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json["profit"], 200.0)
        self.assertNotIn("voucher", response.json)
        update.assert_called_once_with(
            "row-1",
            {"customerRate": 1200.0, "companyRate": 1000.0, "bookingStatus": "Confirmed", "profit": 200.0},
        )

    def test_patch_validation(self):
        response = self.client.patch("/api/travel-data/row-1", json={"customerRate": "abc"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json["code"], "VALIDATION_ERROR")

        response = self.client.patch("/api/travel-data/row-1", json={"voucher": "X"})
        self.assertEqual(response.status_code, 400)

        response = self.client.patch("/api/travel-data/row-1", json=[1, 2])
        self.assertEqual(response.status_code, 400)

    @patch("server.update_travel_data", return_value=None)
    def test_patch_not_found(self, _update):
        response = self.client.patch("/api/travel-data/missing", json={"pnr": "AB12CD"})
        self.assertEqual(response.status_code, 404)

    @patch("server.delete_travel_data", side_effect=[True, False])
    def test_delete(self, _delete):
        self.assertEqual(self.client.delete("/api/travel-data/row-1").status_code, 200)
        self.assertEqual(self.client.delete("/api/travel-data/row-1").status_code, 500)

    @patch("server.get_recent_upload_sessions", return_value=[SESSION])
    def test_upload_sessions(self, get_sessions):
        response = self.client.get("/api/upload-sessions")
        self.assertEqual(response.json, [SESSION])
        get_sessions.assert_called_once_with(limit=10)


class TestMetricsAndExports(unittest.TestCase):
    def setUp(self):
        app.testing = True
        self.client = app.test_client()

    @patch("server.get_travel_data_by_session", return_value=sample_rows())
    def test_metrics(self, _get_rows):
        response = self.client.get("/api/metrics/sess-1")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json["metrics"]["totalBookings"], 3)
        self.assertIn("routePerformance", response.json["charts"])

    @patch("server.get_travel_data_by_session", return_value=sample_rows())
    def test_excel_export(self, _get_rows):
        response = self.client.get("/api/export/sess-1/xlsx?raw=true")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype,
                         "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")
        self.assertTrue(response.data.startswith(b"PK"))

    @patch("server.get_travel_data_by_session", return_value=[])
    def test_export_without_rows(self, _get_rows):
        response = self.client.get("/api/export/sess-1/xlsx")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json["code"], "NO_DATA")

    @patch("server.get_upload_session",
           return_value={"filename": "ledger.xlsx", "openingBalance": {"date": "2024-01-01", "amount": 10.0}})
    @patch("server.get_travel_data_by_session", return_value=sample_rows())
    def test_pdf_export(self, _get_rows, _get_session):
        response = self.client.get("/api/export/sess-1/pdf")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, "application/pdf")
        self.assertTrue(response.data.startswith(b"%PDF"))

    def test_health(self):
        self.assertEqual(self.client.get("/api/health").json, {"status": "ok"})


if __name__ == '__main__':
    unittest.main()
