"""Evidence recording.

Appending evidence is the only way mastery changes, so every successful
write invalidates the cached score for that student and lesson.
"""

import logging
from typing import Any, Dict, Optional

from ..db.base import get_tutor_session
from ..db.models import MasteryEvidence
from .cache import mastery_cache

logger = logging.getLogger(__name__)

EVIDENCE_TYPES = ("correct_answer", "incorrect_answer", "explanation", "application", "struggle")


async def record_mastery_evidence(
    user_id: str,
    lesson_id: str,
    session_id: Optional[str],
    evidence_type: str,
    content: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Append a piece of learning evidence.

    Args:
        user_id: Student ID
        lesson_id: Lesson ID
        session_id: Session the evidence came from
        evidence_type: One of EVIDENCE_TYPES
        content: The student's response or behaviour
        metadata: Optional quality_score, confidence, context

    Returns:
        Success dict with the new evidence id
    """
    if evidence_type not in EVIDENCE_TYPES:
        return {
            "success": False,
            "error": f"Unknown evidence type: {evidence_type}",
        }

    try:
        async with get_tutor_session() as session:
            row = MasteryEvidence(
                user_id=user_id,
                lesson_id=lesson_id,
                session_id=session_id,
                evidence_type=evidence_type,
                content=content,
                metadata_json=metadata or {},
            )
            session.add(row)
            await session.commit()
            evidence_id = row.id
    except Exception as e:
        logger.error(f"[Mastery] Failed to record evidence: {e}")
        return {
            "success": False,
            "error": str(e),
        }

    mastery_cache.invalidate((user_id, lesson_id))
    logger.info(f"[Mastery] Recorded {evidence_type} evidence for lesson {lesson_id}")

    return {
        "success": True,
        "evidence_id": evidence_id,
    }
