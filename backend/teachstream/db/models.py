"""Database models for the teaching workflow.

This module defines SQLAlchemy ORM models for:
- Lessons and student profiles (read from the curriculum/onboarding side)
- Lesson sessions and per-turn interaction logs
- Pending corrections and the validation-failure audit log
- Mastery evidence and adaptation logs
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    Float,
    Integer,
    String,
    Text,
    JSON,
    Index,
)

from .base import Base


def _now() -> str:
    return datetime.utcnow().isoformat()


class Lesson(Base):
    """Lesson definition. Managed by the curriculum side, read-only here."""
    __tablename__ = "lessons"

    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    subject = Column(String(50), nullable=False, default="math")
    grade_level = Column(Integer, nullable=False, default=5)
    learning_objective = Column(Text, nullable=True)
    created_at = Column(String(50), default=_now)


class StudentProfile(Base):
    """Student profile with learning preferences."""
    __tablename__ = "student_profiles"

    user_id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)
    age = Column(Integer, nullable=True)
    grade_level = Column(Integer, nullable=True)
    learning_style = Column(String(50), nullable=True)  # visual, auditory, kinesthetic, etc.
    strengths = Column(JSON, nullable=True)
    struggles = Column(JSON, nullable=True)
    updated_at = Column(String(50), default=_now, onupdate=_now)


class LessonSession(Base):
    """One student's run through a lesson."""
    __tablename__ = "lesson_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    lesson_id = Column(String(64), nullable=False, index=True)
    active_specialist = Column(String(50), nullable=True)
    status = Column(Enum("active", "ended", name="session_status"), default="active", nullable=False)
    started_at = Column(String(50), default=_now, index=True)
    ended_at = Column(String(50), nullable=True)
    mastery_result = Column(JSON, nullable=True)  # Rules-based determination at session end


class Interaction(Base):
    """Turn log used to rebuild recent history."""
    __tablename__ = "interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    user_message = Column(Text, nullable=False)
    ai_response = Column(Text, nullable=False)
    agent_name = Column(String(50), nullable=True)
    timestamp = Column(String(50), default=_now, index=True)


class AgentInteraction(Base):
    """Per-agent record of who answered and why."""
    __tablename__ = "agent_interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    agent_name = Column(String(50), nullable=False)
    user_message = Column(Text, nullable=False)
    agent_response = Column(Text, nullable=False)
    routing_reason = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    timestamp = Column(String(50), default=_now, index=True)


class PendingCorrection(Base):
    """A rejected response waiting to be corrected on the next turn."""
    __tablename__ = "pending_corrections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False)
    specialist_name = Column(String(50), nullable=False)
    original_response = Column(JSON, nullable=False)  # audioText, displayText, svg
    validation_issues = Column(JSON, nullable=False)
    required_fixes = Column(JSON, nullable=False)
    status = Column(Enum("pending", "delivered", name="correction_status"), default="pending", nullable=False)
    created_at = Column(String(50), default=_now)
    delivered_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_pending_session_status", "session_id", "status", "created_at"),
    )


class ValidationFailure(Base):
    """Audit entry for every rejected response."""
    __tablename__ = "validation_failures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    specialist_name = Column(String(50), nullable=False)
    original_response = Column(JSON, nullable=False)
    validation_result = Column(JSON, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    final_action = Column(String(50), default="failed_validation", nullable=False)
    created_at = Column(String(50), default=_now, index=True)


class MasteryEvidence(Base):
    """Append-only learning evidence used to recompute mastery."""
    __tablename__ = "mastery_evidence"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    lesson_id = Column(String(64), nullable=False)
    session_id = Column(String(64), nullable=True, index=True)
    evidence_type = Column(
        Enum(
            "correct_answer",
            "incorrect_answer",
            "explanation",
            "application",
            "struggle",
            name="evidence_type",
        ),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)  # quality_score, confidence, context
    recorded_at = Column(String(50), default=_now)

    __table_args__ = (
        Index("idx_evidence_user_lesson", "user_id", "lesson_id"),
    )


class AdaptationLog(Base):
    """What the adaptive directives asked for on a given turn."""
    __tablename__ = "adaptation_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    lesson_id = Column(String(64), nullable=False)
    session_id = Column(String(64), nullable=False)
    mastery_level = Column(Float, nullable=False)
    learning_style = Column(String(50), nullable=True)
    difficulty_level = Column(
        Enum("simplified", "standard", "accelerated", name="difficulty_level"),
        nullable=False,
    )
    scaffolding_level = Column(
        Enum("minimal", "standard", "high", name="scaffolding_level"),
        nullable=False,
    )
    response_preview = Column(String(200), nullable=True)
    has_svg = Column(Boolean, default=False, nullable=False)
    directive_count = Column(Integer, default=0, nullable=False)
    created_at = Column(String(50), default=_now)
