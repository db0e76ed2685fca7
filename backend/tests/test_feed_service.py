import unittest

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from engagement_timeline.database import Base
from engagement_timeline.services.engagement_service import compute_class_heatmap
from engagement_timeline.services.feed_service import (
    SqlFeedSource,
    mark_attendance,
    record_mode_change,
    record_observation,
)
import engagement_timeline.models  # noqa: F401

from tests.fakes import DISTRACTED, ENGAGED_TEACHING


class TestSqlFeedSource(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        self.sessions = async_sessionmaker(bind=self.engine, class_=AsyncSession, expire_on_commit=False)

    async def asyncTearDown(self):
        await self.engine.dispose()

    async def test_attendance_keeps_join_order_and_updates_in_place(self):
        async with self.sessions() as db:
            await mark_attendance(db, "LEC1", "b", display_name="Bea")
            await mark_attendance(db, "LEC1", "a", display_name="Al")
            await mark_attendance(db, "LEC1", "b", display_name="Beatrice")
            await mark_attendance(db, "LEC2", "c", display_name="Cy")
            await db.commit()

        async with self.sessions() as db:
            attendance = await SqlFeedSource(db).get_attendance("LEC1")
        self.assertEqual(
            attendance,
            [
                {"student_id": "b", "display_name": "Beatrice", "profile_image": None},
                {"student_id": "a", "display_name": "Al", "profile_image": None},
            ],
        )

    async def test_duplicate_observation_key_overwrites_payload(self):
        async with self.sessions() as db:
            await record_observation(db, "LEC1", "a", "1000", DISTRACTED)
            await record_observation(db, "LEC1", "a", "2000", DISTRACTED)
            await record_observation(db, "LEC1", "a", "1000", ENGAGED_TEACHING)
            await record_observation(db, "LEC1", "b", "1000", DISTRACTED)
            await db.commit()

        async with self.sessions() as db:
            observations = await SqlFeedSource(db).get_observations("LEC1", "a")
        self.assertEqual(observations, {"1000": ENGAGED_TEACHING, "2000": DISTRACTED})

    async def test_duplicate_mode_key_overwrites_mode(self):
        async with self.sessions() as db:
            await record_mode_change(db, "LEC1", "0", "teaching")
            await record_mode_change(db, "LEC1", "5000", "break")
            await record_mode_change(db, "LEC1", "0", "discussion")
            await db.commit()

        async with self.sessions() as db:
            changes = await SqlFeedSource(db).get_mode_changes("LEC1")
        self.assertEqual(changes, {"0": {"mode": "discussion"}, "5000": {"mode": "break"}})

    async def test_heatmap_from_store(self):
        async with self.sessions() as db:
            await mark_attendance(db, "LEC1", "a", display_name="Ana")
            await record_mode_change(db, "LEC1", "0", "teaching")
            await record_observation(db, "LEC1", "a", "0", ENGAGED_TEACHING)
            await record_observation(db, "LEC1", "a", "2000", DISTRACTED)
            await db.commit()

        async with self.sessions() as db:
            heatmap = await compute_class_heatmap(SqlFeedSource(db), "LEC1")
        self.assertTrue(heatmap["has_data"])
        self.assertEqual(heatmap["students"], ["Ana"])
        self.assertEqual([cell["state"] for cell in heatmap["cells"]], [1, 1, 0])


if __name__ == "__main__":
    unittest.main()
