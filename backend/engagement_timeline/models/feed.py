"""Record store tables for attendance, feature observations and mode changes."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    Index,
    UniqueConstraint,
)

from engagement_timeline.database import Base


class SessionAttendance(Base):
    __tablename__ = "session_attendance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_code = Column(String(40), nullable=False, index=True)
    student_id = Column(String(120), nullable=False)
    display_name = Column(String(200), nullable=True)
    profile_image = Column(String(500), nullable=True)
    joined_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("session_code", "student_id", name="uq_attendance_session_student"),
    )


class FeatureObservation(Base):
    __tablename__ = "feature_observations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_code = Column(String(40), nullable=False, index=True)
    student_id = Column(String(120), nullable=False)
    # Raw key exactly as delivered (structured local date-time or epoch ms)
    time_key = Column(String(40), nullable=False)
    payload = Column(JSON, nullable=False)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("session_code", "student_id", "time_key", name="uq_observation_key"),
        Index("ix_observation_session_student", "session_code", "student_id"),
    )


class ModeChange(Base):
    __tablename__ = "mode_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_code = Column(String(40), nullable=False, index=True)
    time_key = Column(String(40), nullable=False)
    mode = Column(String(40), nullable=False)
    changed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("session_code", "time_key", name="uq_mode_change_key"),
    )
