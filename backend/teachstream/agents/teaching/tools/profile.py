"""Profile and adaptation tools.

These tools handle:
- Logging which adaptations were applied to a response
- Enriching the student profile with strengths and struggles found in evidence
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ....db.base import get_tutor_session
from ....db.models import AdaptationLog, MasteryEvidence, StudentProfile
from ....mastery.directives import AdaptiveDirectives
from ..state import AgentResponse, UserProfileInfo

logger = logging.getLogger(__name__)

ENRICHMENT_EVIDENCE_WINDOW = 10
STRUGGLE_THRESHOLD = 3
STRENGTH_THRESHOLD = 2
STRENGTH_MIN_QUALITY = 80


async def get_student_profile(user_id: str) -> UserProfileInfo:
    """Profile fields used for personalization; empty when the student has none."""
    async with get_tutor_session() as session:
        row = await session.get(StudentProfile, user_id)
        if row is None:
            return {"strengths": [], "struggles": []}
        return {
            "name": row.name,
            "age": row.age,
            "grade_level": row.grade_level,
            "learning_style": row.learning_style,
            "strengths": list(row.strengths or []),
            "struggles": list(row.struggles or []),
        }


# =============================================================================
# Adaptation Logging
# =============================================================================

def difficulty_level(mastery: float) -> str:
    if mastery < 50:
        return "simplified"
    if mastery >= 80:
        return "accelerated"
    return "standard"


async def log_adaptation(
    user_id: str,
    lesson_id: str,
    session_id: str,
    directives: AdaptiveDirectives,
    learning_style: Optional[str],
    response: AgentResponse,
) -> Dict[str, Any]:
    """
    Record the adaptations applied to a response.

    Args:
        user_id: Student ID
        lesson_id: Lesson ID
        session_id: Session ID
        directives: Directives used for the turn
        learning_style: Student's learning style, if known
        response: Final response

    Returns:
        Success dict
    """
    try:
        async with get_tutor_session() as session:
            session.add(AdaptationLog(
                user_id=user_id,
                lesson_id=lesson_id,
                session_id=session_id,
                mastery_level=directives.current_mastery,
                learning_style=learning_style,
                difficulty_level=difficulty_level(directives.current_mastery),
                scaffolding_level=directives.encouragement_level,
                response_preview=response.display_text[:200],
                has_svg=bool(response.svg),
                directive_count=directives.directive_count,
            ))
            await session.commit()

        return {"success": True}

    except Exception as e:
        logger.error(f"[Adaptation] Error logging adaptation: {e}")
        return {
            "success": False,
            "error": str(e),
        }


# =============================================================================
# Profile Enrichment
# =============================================================================

def analyze_evidence_patterns(evidence: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """
    Find topics the student keeps struggling with or clearly masters.

    Topics come from the evidence `context` metadata. Three or more
    incorrect/struggle records make a struggle; two or more correct answers
    with quality of at least 80 make a strength.
    """
    stats = defaultdict(lambda: {"struggles": 0, "strong_correct": 0})

    for record in evidence:
        metadata = record.get("metadata") or {}
        topic = metadata.get("context")
        if not topic:
            continue

        kind = record.get("evidence_type")
        if kind in ("incorrect_answer", "struggle"):
            stats[topic]["struggles"] += 1
        if kind == "correct_answer" and (metadata.get("quality_score") or 0) >= STRENGTH_MIN_QUALITY:
            stats[topic]["strong_correct"] += 1

    return {
        "struggles": [t for t, s in stats.items() if s["struggles"] >= STRUGGLE_THRESHOLD],
        "strengths": [t for t, s in stats.items() if s["strong_correct"] >= STRENGTH_THRESHOLD],
    }


def _merge(current: Optional[List[str]], additions: List[str]) -> List[str]:
    merged = list(current or [])
    for topic in additions:
        if topic not in merged:
            merged.append(topic)
    return merged


async def enrich_profile_if_needed(user_id: str, session_id: str) -> Dict[str, Any]:
    """
    Add newly detected strengths and struggles to the student profile.

    Looks at the latest evidence of the session only.

    Returns:
        Success dict with the topics added
    """
    try:
        async with get_tutor_session() as session:
            result = await session.execute(
                select(MasteryEvidence)
                .where(MasteryEvidence.session_id == session_id)
                .order_by(MasteryEvidence.recorded_at.desc(), MasteryEvidence.id.desc())
                .limit(ENRICHMENT_EVIDENCE_WINDOW)
            )
            evidence = [
                {"evidence_type": row.evidence_type, "metadata": row.metadata_json}
                for row in result.scalars().all()
            ]

            patterns = analyze_evidence_patterns(evidence)
            if not patterns["struggles"] and not patterns["strengths"]:
                return {
                    "success": True,
                    "added_struggles": [],
                    "added_strengths": [],
                }

            profile = await session.get(StudentProfile, user_id)
            if profile is None:
                profile = StudentProfile(user_id=user_id, strengths=[], struggles=[])
                session.add(profile)

            added_struggles = [t for t in patterns["struggles"] if t not in (profile.struggles or [])]
            added_strengths = [t for t in patterns["strengths"] if t not in (profile.strengths or [])]
            profile.struggles = _merge(profile.struggles, added_struggles)
            profile.strengths = _merge(profile.strengths, added_strengths)
            await session.commit()

        if added_struggles or added_strengths:
            logger.info(
                f"[Profile] Enriched {user_id}: struggles+={added_struggles}, strengths+={added_strengths}"
            )
        return {
            "success": True,
            "added_struggles": added_struggles,
            "added_strengths": added_strengths,
        }

    except Exception as e:
        logger.error(f"[Profile] Error enriching profile: {e}")
        return {
            "success": False,
            "error": str(e),
        }
