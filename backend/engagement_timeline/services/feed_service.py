"""Feed access: attendance, per-student observations and mode changes for a session."""

from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_timeline.models.feed import SessionAttendance, FeatureObservation, ModeChange


class FeedSource(Protocol):
    async def get_attendance(self, session_code: str) -> List[Dict[str, Any]]:
        """Entries of ``{"student_id", "display_name", "profile_image"}`` in join order."""
        ...

    async def get_observations(self, session_code: str, student_id: str) -> Dict[str, Dict[str, Any]]:
        ...

    async def get_mode_changes(self, session_code: str) -> Dict[str, Dict[str, Any]]:
        ...


def _attendance_payload(row: SessionAttendance) -> Dict[str, Any]:
    return {
        "student_id": row.student_id,
        "display_name": row.display_name,
        "profile_image": row.profile_image,
    }


class SqlFeedSource:
    """Reads feeds from the record store tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_attendance(self, session_code: str) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            select(SessionAttendance)
            .where(SessionAttendance.session_code == session_code)
            .order_by(SessionAttendance.joined_at.asc(), SessionAttendance.id.asc())
        )
        return [_attendance_payload(row) for row in result.scalars().all()]

    async def get_observations(self, session_code: str, student_id: str) -> Dict[str, Dict[str, Any]]:
        result = await self.db.execute(
            select(FeatureObservation.time_key, FeatureObservation.payload)
            .where(
                FeatureObservation.session_code == session_code,
                FeatureObservation.student_id == student_id,
            )
            .order_by(FeatureObservation.id.asc())
        )
        return {row.time_key: dict(row.payload or {}) for row in result.all()}

    async def get_mode_changes(self, session_code: str) -> Dict[str, Dict[str, Any]]:
        result = await self.db.execute(
            select(ModeChange.time_key, ModeChange.mode)
            .where(ModeChange.session_code == session_code)
            .order_by(ModeChange.id.asc())
        )
        return {row.time_key: {"mode": row.mode} for row in result.all()}


async def mark_attendance(
    db: AsyncSession,
    session_code: str,
    student_id: str,
    display_name: Optional[str] = None,
    profile_image: Optional[str] = None,
) -> SessionAttendance:
    existing = await db.execute(
        select(SessionAttendance).where(
            SessionAttendance.session_code == session_code,
            SessionAttendance.student_id == student_id,
        )
    )
    entry = existing.scalar_one_or_none()
    if entry:
        if display_name:
            entry.display_name = display_name
        if profile_image:
            entry.profile_image = profile_image
    else:
        entry = SessionAttendance(
            session_code=session_code,
            student_id=student_id,
            display_name=display_name,
            profile_image=profile_image,
        )
        db.add(entry)
    await db.flush()
    await db.refresh(entry)
    return entry


async def record_observation(
    db: AsyncSession,
    session_code: str,
    student_id: str,
    time_key: str,
    payload: Dict[str, Any],
) -> FeatureObservation:
    existing = await db.execute(
        select(FeatureObservation).where(
            FeatureObservation.session_code == session_code,
            FeatureObservation.student_id == student_id,
            FeatureObservation.time_key == time_key,
        )
    )
    observation = existing.scalar_one_or_none()
    if observation:
        observation.payload = payload
    else:
        observation = FeatureObservation(
            session_code=session_code,
            student_id=student_id,
            time_key=time_key,
            payload=payload,
        )
        db.add(observation)
    await db.flush()
    await db.refresh(observation)
    return observation


async def record_mode_change(
    db: AsyncSession,
    session_code: str,
    time_key: str,
    mode: str,
) -> ModeChange:
    existing = await db.execute(
        select(ModeChange).where(
            ModeChange.session_code == session_code,
            ModeChange.time_key == time_key,
        )
    )
    change = existing.scalar_one_or_none()
    if change:
        change.mode = mode
    else:
        change = ModeChange(session_code=session_code, time_key=time_key, mode=mode)
        db.add(change)
    await db.flush()
    await db.refresh(change)
    return change
