import unittest

from fastapi.testclient import TestClient

from streamwatch.main import app
from streamwatch.models import ErrorType
from streamwatch.services.error_ledger import ErrorLedger
from streamwatch.services.stream_monitor import stream_monitor
from streamwatch.services.stream_store import StreamStore


class TestStreamsApi(unittest.TestCase):
    def setUp(self):
        self._store = stream_monitor.store
        self._log_service = stream_monitor.log_service
        stream_monitor.store = StreamStore()
        stream_monitor.log_service = None
        # Lifespan is not entered, so the poll loop never starts
        self.client = TestClient(app)

    def tearDown(self):
        stream_monitor.store = self._store
        stream_monitor.log_service = self._log_service

    def create(self, name="Channel 1", url="http://cdn.test/live.m3u8"):
        return self.client.post("/api/streams", json={"name": name, "url": url})

    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "running")

    def test_create_and_get(self):
        response = self.create()
        self.assertEqual(response.status_code, 201)
        stream_id = response.json()["id"]
        self.assertEqual(response.json()["status"], "offline")

        response = self.client.get(f"/api/streams/{stream_id}")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["health"]["mediaSequence"], -1)
        self.assertEqual(body["scores"]["healthScore"], 50)
        self.assertEqual(body["scores"]["color"], "yellow")

    def test_duplicate_url(self):
        self.create()
        response = self.create(name="Other")
        self.assertEqual(response.status_code, 409)

    def test_list(self):
        self.create("A", "http://cdn.test/a.m3u8")
        self.create("B", "http://cdn.test/b.m3u8")

        response = self.client.get("/api/streams")
        self.assertEqual(sorted(s["name"] for s in response.json()), ["A", "B"])

    def test_delete(self):
        stream_id = self.create().json()["id"]

        self.assertEqual(self.client.delete(f"/api/streams/{stream_id}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/streams/{stream_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/streams/{stream_id}").status_code, 404)

    def test_metrics_empty(self):
        stream_id = self.create().json()["id"]

        response = self.client.get(f"/api/streams/{stream_id}/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])
        self.assertEqual(self.client.get("/api/streams/missing/metrics").status_code, 404)

    def test_log_report(self):
        stream_id = self.create().json()["id"]

        response = self.client.get(f"/api/streams/{stream_id}/log")
        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment", response.headers["content-disposition"])
        self.assertIn("Channel_1_log_", response.headers["content-disposition"])
        self.assertIn("NO ERRORS RECORDED", response.text)
        self.assertIn("Status:         OFFLINE", response.text)

    def test_log_report_lists_errors(self):
        stream_id = self.create().json()["id"]
        store = stream_monitor.store
        stream = store._streams[stream_id]
        ErrorLedger().append(stream, ErrorType.MEDIA_SEQUENCE, "Sequence reset from 100 to 97")

        response = self.client.get(f"/api/streams/{stream_id}/log")
        self.assertIn("ERROR LOG (1 errors)", response.text)
        self.assertIn("Sequence reset from 100 to 97", response.text)

    def test_health(self):
        self.create()
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body["monitor_running"])
        self.assertEqual(body["stream_count"], 1)

    def test_websocket_connect(self):
        with self.client.websocket_connect("/ws") as websocket:
            self.assertEqual(websocket.receive_json()["type"], "connected")

    def test_events(self):
        stream_id = self.create().json()["id"]

        response = self.client.get(f"/api/streams/{stream_id}/events")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["stream_id"], stream_id)
        self.assertEqual(self.client.get("/api/streams/missing/events").status_code, 404)
