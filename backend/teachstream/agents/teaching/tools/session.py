"""Session tools for the teaching workflow.

These tools handle:
- Starting and ending lesson sessions
- Tracking which specialist is active in a session
- Logging each turn and the agent that answered it
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select

from ....db.base import get_tutor_session
from ....db.models import AgentInteraction, Interaction, LessonSession
from ..state import COORDINATOR

logger = logging.getLogger(__name__)


def _session_to_dict(row: LessonSession) -> Dict[str, Any]:
    return {
        "session_id": row.id,
        "user_id": row.user_id,
        "lesson_id": row.lesson_id,
        "active_specialist": row.active_specialist,
        "status": row.status,
        "started_at": row.started_at,
        "ended_at": row.ended_at,
        "mastery_result": row.mastery_result,
    }


# =============================================================================
# Session Lifecycle
# =============================================================================

async def create_session(
    user_id: str,
    lesson_id: str,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Start a lesson session.

    Args:
        user_id: Student ID
        lesson_id: Lesson ID
        session_id: Optional client-chosen ID; generated when omitted

    Returns:
        Session data
    """
    try:
        async with get_tutor_session() as session:
            row = LessonSession(
                id=session_id or str(uuid.uuid4()),
                user_id=user_id,
                lesson_id=lesson_id,
                status="active",
            )
            session.add(row)
            await session.commit()

        logger.info(f"Started lesson session {row.id} for lesson {lesson_id}")
        return {
            "success": True,
            **_session_to_dict(row),
        }

    except Exception as e:
        logger.error(f"Error starting session: {e}")
        return {
            "success": False,
            "error": str(e),
            "session_id": None,
        }


async def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    """Session data, or None when it does not exist."""
    async with get_tutor_session() as session:
        row = await session.get(LessonSession, session_id)
        return _session_to_dict(row) if row else None


async def end_session(
    session_id: str,
    mastery_result: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    End a lesson session.

    Args:
        session_id: Session ID
        mastery_result: Rules-based mastery determination to store

    Returns:
        The ended session
    """
    try:
        async with get_tutor_session() as session:
            row = await session.get(LessonSession, session_id)
            if row is None:
                return {
                    "success": False,
                    "error": f"Session {session_id} not found",
                    "session_id": session_id,
                }

            if row.status != "ended":
                row.status = "ended"
                row.ended_at = datetime.utcnow().isoformat()
            if mastery_result is not None:
                row.mastery_result = mastery_result
            await session.commit()

        logger.info(f"Ended lesson session {session_id}")
        return {
            "success": True,
            **_session_to_dict(row),
        }

    except Exception as e:
        logger.error(f"Error ending session: {e}")
        return {
            "success": False,
            "error": str(e),
            "session_id": session_id,
        }


async def set_active_specialist(
    session_id: str,
    user_id: str,
    lesson_id: str,
    agent_name: str,
) -> Dict[str, Any]:
    """
    Record which specialist answered, so the next turn can skip routing.

    A coordinator answer clears the active specialist. The session row is
    created when the first turn arrives before an explicit start.
    """
    active = None if agent_name == COORDINATOR else agent_name
    try:
        async with get_tutor_session() as session:
            row = await session.get(LessonSession, session_id)
            if row is None:
                session.add(LessonSession(
                    id=session_id,
                    user_id=user_id,
                    lesson_id=lesson_id,
                    active_specialist=active,
                    status="active",
                ))
            else:
                row.active_specialist = active
            await session.commit()

        return {
            "success": True,
            "active_specialist": active,
        }

    except Exception as e:
        logger.error(f"Error updating active specialist: {e}")
        return {
            "success": False,
            "error": str(e),
        }


# =============================================================================
# Interaction Logging
# =============================================================================

async def save_interaction(
    session_id: str,
    user_message: str,
    ai_response: str,
    agent_name: str,
) -> Dict[str, Any]:
    """Append a turn to the session history."""
    try:
        async with get_tutor_session() as session:
            session.add(Interaction(
                session_id=session_id,
                user_message=user_message,
                ai_response=ai_response,
                agent_name=agent_name,
            ))
            await session.commit()

        return {"success": True}

    except Exception as e:
        logger.error(f"Error saving interaction: {e}")
        return {
            "success": False,
            "error": str(e),
        }


async def save_agent_interaction(
    session_id: str,
    agent_name: str,
    user_message: str,
    agent_response: str,
    routing_reason: str,
    response_time_ms: int,
) -> Dict[str, Any]:
    """Record which agent answered a turn, why, and how long it took."""
    try:
        async with get_tutor_session() as session:
            session.add(AgentInteraction(
                session_id=session_id,
                agent_name=agent_name,
                user_message=user_message,
                agent_response=agent_response,
                routing_reason=routing_reason,
                response_time_ms=response_time_ms,
            ))
            await session.commit()

        return {"success": True}

    except Exception as e:
        logger.error(f"Error saving agent interaction: {e}")
        return {
            "success": False,
            "error": str(e),
        }


async def get_recent_history(session_id: str, limit: int = 5) -> list:
    """Last `limit` turns of a session, oldest first."""
    async with get_tutor_session() as session:
        result = await session.execute(
            select(Interaction)
            .where(Interaction.session_id == session_id)
            .order_by(Interaction.timestamp.desc(), Interaction.id.desc())
            .limit(limit)
        )
        rows = list(result.scalars().all())

    rows.reverse()
    return [
        {
            "user_message": row.user_message,
            "ai_response": row.ai_response,
            "timestamp": row.timestamp,
        }
        for row in rows
    ]
