import os
import tempfile
import unittest
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from engagement_timeline.api.sessions import get_feed_source, get_live_hub
from engagement_timeline.config import settings
from engagement_timeline.database import Base, get_db
from engagement_timeline.main import app
from engagement_timeline.services.live_service import LiveSessionHub
import engagement_timeline.models  # noqa: F401

from tests.fakes import DISTRACTED, ENGAGED_TEACHING, InMemoryFeed


async def _no_db():
    yield None


class TestSessionsApi(unittest.TestCase):

    def setUp(self):
        self.feed = InMemoryFeed(
            attendance=[
                {"student_id": "a", "display_name": "Student A", "profile_image": None},
                {"student_id": "b", "display_name": "Student B", "profile_image": None},
            ],
            observations={"a": {"0": ENGAGED_TEACHING, "3000": DISTRACTED}},
            mode_changes={"0": {"mode": "teaching"}},
        )
        self.hub = LiveSessionHub(feed_factory=self.feed.factory(), interval_seconds=60)
        app.dependency_overrides[get_feed_source] = lambda: self.feed
        app.dependency_overrides[get_live_hub] = lambda: self.hub
        app.dependency_overrides[get_db] = _no_db

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_health(self):
        client = TestClient(app)
        response = client.get("/api/v1/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")

    def test_student_summary(self):
        client = TestClient(app)
        response = client.get("/api/v1/sessions/LEC1/students/a/summary")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["student_label"], "Student A")
        self.assertEqual(body["summary"]["engaged"], 1)
        self.assertEqual(body["summary"]["disengaged"], 1)
        self.assertEqual(body["summary"]["engaged_percent"], 50.0)
        self.assertEqual(body["summary"]["modes"]["teaching"]["engaged"], 1)
        self.assertTrue(body["suggestions"])

    def test_heatmap(self):
        client = TestClient(app)
        response = client.get("/api/v1/sessions/LEC1/heatmap")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["has_data"])
        self.assertEqual(body["tick_count"], 4)
        self.assertEqual(body["students"], ["Student A", "Student B"])
        self.assertEqual(len(body["cells"]), 8)

    def test_heatmap_no_data(self):
        self.feed.observations = {}
        client = TestClient(app)
        body = client.get("/api/v1/sessions/LEC1/heatmap").json()
        self.assertFalse(body["has_data"])
        self.assertEqual(body["cells"], [])

    def test_heatmap_mode_override(self):
        client = TestClient(app)
        body = client.get("/api/v1/sessions/LEC1/heatmap", params={"mode_override": "break"}).json()
        self.assertEqual(body["mode_override"], "break")
        self.assertTrue(all(cell["state"] == 1 for cell in body["cells"] if cell["student"] == "Student A"))

        response = client.get("/api/v1/sessions/LEC1/heatmap", params={"mode_override": "nap"})
        self.assertEqual(response.status_code, 400)

    def test_seek(self):
        client = TestClient(app)
        response = client.get(
            "/api/v1/sessions/LEC1/heatmap/seek", params={"student": "Student A", "time_ms": 2500}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["seconds_since_start"], 2)

        missing = client.get("/api/v1/sessions/LEC1/heatmap/seek", params={"student": "Nobody", "time_ms": 0})
        self.assertEqual(missing.status_code, 404)

    def test_modes_and_attendance(self):
        client = TestClient(app)
        modes = client.get("/api/v1/sessions/LEC1/modes").json()
        self.assertEqual(modes["default_mode"], "teaching")
        self.assertEqual(modes["events"], [{"time": 0, "mode": "teaching"}])

        attendance = client.get("/api/v1/sessions/LEC1/attendance").json()
        self.assertEqual([entry["student_id"] for entry in attendance], ["a", "b"])

    def test_ingestion_validation(self):
        client = TestClient(app)
        response = client.post(
            "/api/v1/sessions/LEC1/students/a/observations",
            json={"time_key": "not_a_time", "gaze_state": "Center"},
        )
        self.assertEqual(response.status_code, 400)

        response = client.post("/api/v1/sessions/LEC1/mode", json={"mode": "nap"})
        self.assertEqual(response.status_code, 422)

    def test_live_lifecycle(self):
        with TestClient(app) as client:
            started = client.post("/api/v1/sessions/LEC1/live/start").json()
            self.assertTrue(started["running"])

            pinned = client.put("/api/v1/sessions/LEC1/live/override", json={"mode": "break"})
            self.assertEqual(pinned.status_code, 200)
            self.assertEqual(pinned.json()["mode_override"], "break")
            self.assertTrue(pinned.json()["latest"]["has_data"])

            bad = client.put("/api/v1/sessions/LEC1/live/override", json={"mode": "nap"})
            self.assertEqual(bad.status_code, 422)

            stopped = client.post("/api/v1/sessions/LEC1/live/stop").json()
            self.assertFalse(stopped["running"])

    def test_seek_span_guard_is_a_bad_request(self):
        client = TestClient(app)
        with mock.patch.object(settings, "HEATMAP_MAX_TICKS", 2):
            response = client.get(
                "/api/v1/sessions/LEC1/heatmap/seek", params={"student": "Student A", "time_ms": 0}
            )
        self.assertEqual(response.status_code, 400)

        self.feed.observations = {}
        response = client.get("/api/v1/sessions/LEC1/heatmap/seek", params={"student": "Student A", "time_ms": 0})
        self.assertEqual(response.status_code, 404)

    def test_status_reads_do_not_register_sessions(self):
        client = TestClient(app)
        body = client.get("/api/v1/sessions/NOPE/live").json()
        self.assertFalse(body["running"])
        self.assertIsNone(body["latest"])
        client.post("/api/v1/sessions/NOPE/live/stop")
        self.assertIsNone(self.hub.find("NOPE"))

    def test_websocket_pushes_latest_heatmap_on_connect(self):
        with TestClient(app) as client:
            client.post("/api/v1/sessions/LEC1/live/start")
            client.put("/api/v1/sessions/LEC1/live/override", json={"mode": None})
            with client.websocket_connect("/api/v1/sessions/LEC1/heatmap/ws") as websocket:
                message = websocket.receive_json()
            client.post("/api/v1/sessions/LEC1/live/stop")
        self.assertEqual(message["type"], "heatmap_update")
        self.assertEqual(message["heatmap"]["students"], ["Student A", "Student B"])
        self.assertIsNone(self.hub.find("LEC1"))

    def test_websocket_reports_no_data(self):
        self.feed.observations = {}
        with TestClient(app) as client:
            client.post("/api/v1/sessions/LEC1/live/start")
            client.put("/api/v1/sessions/LEC1/live/override", json={"mode": "exam"})
            with client.websocket_connect("/api/v1/sessions/LEC1/heatmap/ws") as websocket:
                message = websocket.receive_json()
            client.post("/api/v1/sessions/LEC1/live/stop")
        self.assertEqual(message["type"], "no_data")
        self.assertFalse(message["heatmap"]["has_data"])


class TestIngestionApi(unittest.TestCase):
    """Ingestion routes against a SQLite record store."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmp.name, "feeds.db")
        sync_engine = create_engine(f"sqlite:///{path}")
        Base.metadata.create_all(sync_engine)
        sync_engine.dispose()

        engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
        sessions = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

        async def _sqlite_db():
            async with sessions() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        app.dependency_overrides[get_db] = _sqlite_db
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.tmp.cleanup()

    def test_attendance_round_trip(self):
        response = self.client.post(
            "/api/v1/sessions/LEC1/attendance", json={"student_id": "a", "display_name": "Ana"}
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["display_name"], "Ana")
        self.client.post("/api/v1/sessions/LEC1/attendance", json={"student_id": "b"})
        self.client.post("/api/v1/sessions/LEC1/attendance", json={"student_id": "a", "display_name": "Ana B"})

        attendance = self.client.get("/api/v1/sessions/LEC1/attendance").json()
        self.assertEqual([(entry["student_id"], entry["display_name"]) for entry in attendance], [("a", "Ana B"), ("b", None)])

    def test_mode_change_returns_timeline(self):
        self.client.post("/api/v1/sessions/LEC1/mode", json={"mode": "teaching", "time_key": "0"})
        response = self.client.post("/api/v1/sessions/LEC1/mode", json={"mode": "exam", "time_key": "5000"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(
            response.json()["events"],
            [{"time": 0, "mode": "teaching"}, {"time": 5000, "mode": "exam"}],
        )

    def test_camel_case_observation_is_stored_and_classified(self):
        self.client.post("/api/v1/sessions/LEC1/attendance", json={"student_id": "a", "display_name": "Ana"})
        self.client.post("/api/v1/sessions/LEC1/mode", json={"mode": "teaching", "time_key": "0"})
        response = self.client.post(
            "/api/v1/sessions/LEC1/students/a/observations",
            json={
                "time_key": "1000",
                "drowsyState": "Awake",
                "yawnState": "NotYawning",
                "gazeState": "Center",
                "poseState": "Forward",
                "handState": "NotRaised",
                "emotionState": "neutral",
            },
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["time_ms"], 1000)

        summary = self.client.get("/api/v1/sessions/LEC1/students/a/summary").json()["summary"]
        self.assertEqual(summary["engaged"], 1)
        self.assertEqual(summary["gaze_counts"]["Center"], 1)
        self.assertEqual(summary["pose_counts"]["unknown"], 0)

    def test_duplicate_observation_overwrites(self):
        self.client.post("/api/v1/sessions/LEC1/attendance", json={"student_id": "a"})
        self.client.post("/api/v1/sessions/LEC1/students/a/observations", json={"time_key": "0", **DISTRACTED})
        self.client.post("/api/v1/sessions/LEC1/students/a/observations", json={"time_key": "0", **ENGAGED_TEACHING})

        summary = self.client.get("/api/v1/sessions/LEC1/students/a/summary").json()["summary"]
        self.assertEqual(summary["valid_records"], 1)
        self.assertEqual(summary["engaged"], 1)

    def test_observation_without_features_is_rejected(self):
        response = self.client.post(
            "/api/v1/sessions/LEC1/students/a/observations", json={"time_key": "0", "unrelated": "x"}
        )
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()
