import os
import tempfile
from pathlib import Path
from unittest import TestCase
from unittest.mock import patch

from fastapi.testclient import TestClient

# Minimal env so pydantic Settings can load during imports
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB", "testdb")

from ephemera.main import create_app  # noqa: E402
from fakes import FakeDB, make_settings  # noqa: E402


class HealthTests(TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db = FakeDB()
        patcher = patch("ephemera.repositories.entries_repo.get_db", return_value=self.db)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp.cleanup)
        self.client = TestClient(create_app(make_settings(Path(self._tmp.name))))

    def test_healthy(self):
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.content, b"")

        resp = self.client.head("/healthz")
        self.assertEqual(resp.status_code, 200)

    def test_ping_error(self):
        self.db.ping_error = RuntimeError("no reachable servers")
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.text, "no reachable servers\n")

    def test_ping_timeout(self):
        self.db.ping_delay = 0.5
        with patch("ephemera.routes.health.PING_TIMEOUT_SECONDS", 0.05):
            resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 500)
        self.assertIn("timed out", resp.text)

    def test_not_connected(self):
        with patch("ephemera.repositories.entries_repo.get_db", side_effect=RuntimeError("MongoDB is not connected")):
            resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 500)
        self.assertIn("not connected", resp.text)


class VarzTests(TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.client = TestClient(create_app(make_settings(Path(self._tmp.name))))

    def test_exposition_format(self):
        resp = self.client.get("/varz")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/plain"))
        self.assertIn("# TYPE ephemera_uploads_total counter", resp.text)
        self.assertIn("process_", resp.text)

    def test_counts_its_own_scrapes(self):
        self.client.get("/varz")
        resp = self.client.get("/varz")
        self.assertIn('ephemera_metric_handler_requests_total{code="200"} 1.0', resp.text)

    def test_registries_are_per_app(self):
        other = TestClient(create_app(make_settings(Path(self._tmp.name))))
        self.client.get("/varz")
        self.client.get("/varz")
        resp = other.get("/varz")
        self.assertNotIn('ephemera_metric_handler_requests_total{code="200"}', resp.text)
