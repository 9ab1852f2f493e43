"""Per-turn context loading.

Everything a turn needs is read in parallel: profile, recent history,
lesson, the session's active specialist, current mastery and the oldest
pending correction. Only a missing lesson is fatal; every other read
degrades to an empty value.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...core.config import get_settings
from ...core.errors import LessonNotFoundError
from ...corrections.store import PendingCorrectionStore
from ...db.base import get_tutor_session
from ...db.models import Lesson
from ...mastery.directives import AdaptiveDirectives, format_directives
from ...mastery.tracker import get_current_mastery_level
from .prompts import build_self_correction_block
from .state import AgentContext, HistoryTurn, LessonInfo, TurnRequest, UserProfileInfo
from .tools.profile import get_student_profile
from .tools.session import get_recent_history, get_session

logger = logging.getLogger(__name__)


@dataclass
class TeachingContextData:
    """Raw inputs loaded for one turn."""
    lesson: LessonInfo
    profile: UserProfileInfo = field(default_factory=dict)
    history: List[HistoryTurn] = field(default_factory=list)
    active_specialist: Optional[str] = None
    mastery: int = 50
    pending_correction: Optional[Dict[str, Any]] = None


async def load_lesson(lesson_id: str) -> LessonInfo:
    """
    Read a lesson.

    Raises:
        LessonNotFoundError: If no lesson has this ID
    """
    async with get_tutor_session() as session:
        row = await session.get(Lesson, lesson_id)
        if row is None:
            raise LessonNotFoundError(lesson_id)
        return {
            "id": row.id,
            "title": row.title,
            "subject": row.subject,
            "grade_level": row.grade_level,
            "learning_objective": row.learning_objective or "",
        }


async def _load_profile(user_id: str) -> UserProfileInfo:
    try:
        return await get_student_profile(user_id)
    except Exception as e:
        logger.error(f"[context] Failed to load profile for {user_id}: {e}")
        return {"strengths": [], "struggles": []}


async def _load_history(session_id: str, limit: int) -> List[HistoryTurn]:
    try:
        return await get_recent_history(session_id, limit)
    except Exception as e:
        logger.error(f"[context] Failed to load history for {session_id}: {e}")
        return []


async def _load_active_specialist(session_id: str) -> Optional[str]:
    try:
        session = await get_session(session_id)
    except Exception as e:
        logger.error(f"[context] Failed to load session {session_id}: {e}")
        return None
    return session["active_specialist"] if session else None


async def load_teaching_context(
    user_id: str,
    session_id: str,
    lesson_id: str,
    store: PendingCorrectionStore,
) -> TeachingContextData:
    """
    Load every input of a turn concurrently.

    Raises:
        LessonNotFoundError: If the lesson does not exist
    """
    settings = get_settings()
    profile, history, lesson, active_specialist, mastery, correction = await asyncio.gather(
        _load_profile(user_id),
        _load_history(session_id, settings.SESSION_HISTORY_LIMIT),
        load_lesson(lesson_id),
        _load_active_specialist(session_id),
        get_current_mastery_level(user_id, lesson_id),
        store.get_pending_correction(session_id),
    )

    if correction:
        logger.info(f"[context] Pending correction {correction['id']} found for session {session_id}")

    return TeachingContextData(
        lesson=lesson,
        profile=profile,
        history=history,
        active_specialist=active_specialist,
        mastery=mastery,
        pending_correction=correction,
    )


def build_adaptive_instructions(
    directives: AdaptiveDirectives,
    pending_correction: Optional[Dict[str, Any]] = None,
) -> str:
    """Directive text, with any self-correction block placed in front."""
    instructions = format_directives(directives)
    if not pending_correction:
        return instructions

    original = pending_correction.get("original_response") or {}
    block = build_self_correction_block(
        original.get("displayText") or original.get("audioText") or "",
        pending_correction.get("validation_issues") or [],
        pending_correction.get("required_fixes") or [],
    )
    return f"{block}\n{instructions}"


def build_agent_context(
    data: TeachingContextData,
    request: TurnRequest,
    adaptive_instructions: str,
) -> AgentContext:
    return AgentContext(
        user_id=request.user_id,
        session_id=request.session_id,
        lesson_id=request.lesson_id,
        user_profile=data.profile,
        lesson=data.lesson,
        conversation_history=data.history,
        adaptive_instructions=adaptive_instructions,
        previous_agent=data.active_specialist,
        attachments=list(request.attachments),
    )
