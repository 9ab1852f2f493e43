"""Mastery scoring from recorded evidence.

- `get_current_mastery_level`: 0-100 score that drives difficulty adaptation,
  cached per (user, lesson) and invalidated on every evidence write
- `determine_mastery`: deterministic, rules-based verdict used at session end
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import select

from ..core.config import get_settings
from ..db.base import get_tutor_session
from ..db.models import MasteryEvidence
from .cache import mastery_cache

logger = logging.getLogger(__name__)

STRUGGLING = "struggling"
LEARNING = "learning"
MASTERING = "mastering"


def mastery_tier(score: float) -> str:
    """Discretize a mastery score: struggling <50, learning 50-79, mastering >=80."""
    if score < 50:
        return STRUGGLING
    if score < 80:
        return LEARNING
    return MASTERING


def _quality(metadata: Optional[Dict[str, Any]]) -> float:
    value = (metadata or {}).get("quality_score")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return 0.0


def compute_mastery_score(
    evidence: Iterable[Tuple[str, Optional[Dict[str, Any]]]],
    default: Optional[int] = None,
) -> int:
    """
    Score mastery from (evidence_type, metadata) pairs.

    Correct/incorrect answers decide when present; otherwise the mean
    positive quality score; otherwise the neutral default.
    """
    if default is None:
        default = get_settings().DEFAULT_MASTERY

    rows = list(evidence)
    correct = sum(1 for kind, _ in rows if kind == "correct_answer")
    incorrect = sum(1 for kind, _ in rows if kind == "incorrect_answer")
    if correct + incorrect > 0:
        return round(correct / (correct + incorrect) * 100)

    qualities = [q for q in (_quality(meta) for _, meta in rows) if q > 0]
    if qualities:
        return round(sum(qualities) / len(qualities))

    return default


async def get_evidence_for_lesson(user_id: str, lesson_id: str) -> List[MasteryEvidence]:
    """All evidence rows for a lesson, oldest first."""
    async with get_tutor_session() as session:
        result = await session.execute(
            select(MasteryEvidence)
            .where(
                MasteryEvidence.user_id == user_id,
                MasteryEvidence.lesson_id == lesson_id,
            )
            .order_by(MasteryEvidence.recorded_at, MasteryEvidence.id)
        )
        return list(result.scalars().all())


async def _load_mastery(user_id: str, lesson_id: str) -> int:
    rows = await get_evidence_for_lesson(user_id, lesson_id)
    score = compute_mastery_score((row.evidence_type, row.metadata_json) for row in rows)
    logger.debug(f"[Mastery] {user_id}/{lesson_id}: {score} from {len(rows)} evidence rows")
    return score


async def get_current_mastery_level(user_id: str, lesson_id: str) -> int:
    """
    Current mastery (0-100) for a student and lesson.

    Returns the neutral default when evidence cannot be read; that value is
    not cached.
    """
    try:
        return await mastery_cache.get_or_load(
            (user_id, lesson_id),
            lambda: _load_mastery(user_id, lesson_id),
        )
    except Exception as e:
        logger.error(f"[Mastery] Error getting mastery level: {e}")
        return get_settings().DEFAULT_MASTERY


# =============================================================================
# Rules-based determination
# =============================================================================

@dataclass
class MasteryRules:
    """Thresholds a student must meet to master a lesson."""
    min_correct_answers: int = 3
    min_explanation_quality: float = 0
    min_application_attempts: int = 0
    min_overall_quality: float = 60
    max_struggle_ratio: float = 0.4
    min_time_spent_minutes: float = 3


def _parse_started_at(started_at: Union[str, datetime, None]) -> Optional[datetime]:
    if isinstance(started_at, datetime):
        return started_at
    if not started_at:
        return None
    try:
        return datetime.fromisoformat(started_at)
    except ValueError:
        return None


def evaluate_mastery(
    evidence: List[Tuple[str, Optional[Dict[str, Any]]]],
    time_spent_minutes: float,
    rules: Optional[MasteryRules] = None,
) -> Dict[str, Any]:
    """Apply mastery rules to evidence; mastered only if every criterion holds."""
    rules = rules or MasteryRules()

    counts = {kind: 0 for kind in ("correct_answer", "incorrect_answer", "explanation", "application", "struggle")}
    for kind, _ in evidence:
        if kind in counts:
            counts[kind] += 1

    explanation_scores = [q for q in (_quality(m) for k, m in evidence if k == "explanation") if q > 0]
    all_scores = [q for q in (_quality(m) for _, m in evidence) if q > 0]
    avg_explanation = sum(explanation_scores) / len(explanation_scores) if explanation_scores else 0
    avg_overall = sum(all_scores) / len(all_scores) if all_scores else 0
    struggle_ratio = counts["struggle"] / len(evidence) if evidence else 0

    criteria_met = {
        "correct_answers": counts["correct_answer"] >= rules.min_correct_answers,
        "explanation_quality": avg_explanation >= rules.min_explanation_quality,
        "application_attempts": counts["application"] >= rules.min_application_attempts,
        "overall_quality": avg_overall >= rules.min_overall_quality,
        "struggle_ratio": struggle_ratio <= rules.max_struggle_ratio,
        "time_spent": time_spent_minutes >= rules.min_time_spent_minutes,
    }

    return {
        "has_mastered": all(criteria_met.values()),
        "confidence": 1.0,
        "criteria_met": criteria_met,
        "evidence": {
            "correct_answers": counts["correct_answer"],
            "incorrect_answers": counts["incorrect_answer"],
            "explanations": counts["explanation"],
            "applications": counts["application"],
            "struggles": counts["struggle"],
            "avg_quality": round(avg_overall),
            "time_spent_minutes": round(time_spent_minutes, 1),
        },
        "rules_applied": asdict(rules),
    }


async def determine_mastery(
    user_id: str,
    lesson_id: str,
    session_started_at: Union[str, datetime, None],
    rules: Optional[MasteryRules] = None,
) -> Dict[str, Any]:
    """
    Rules-based mastery verdict for a lesson.

    Args:
        user_id: Student ID
        lesson_id: Lesson ID
        session_started_at: Session start (ISO string or datetime) for time spent
        rules: Thresholds; defaults to MasteryRules()

    Returns:
        Dict with has_mastered, criteria_met, evidence statistics and the
        rules applied. Read errors produce a conservative "not mastered".
    """
    rules = rules or MasteryRules()
    started = _parse_started_at(session_started_at)
    elapsed = (datetime.utcnow() - started).total_seconds() / 60 if started else 0.0

    try:
        rows = await get_evidence_for_lesson(user_id, lesson_id)
    except Exception as e:
        logger.error(f"[Mastery] Error determining mastery: {e}")
        result = evaluate_mastery([], 0.0, rules)
        result["criteria_met"] = {name: False for name in result["criteria_met"]}
        result["has_mastered"] = False
        return result

    result = evaluate_mastery(
        [(row.evidence_type, row.metadata_json) for row in rows],
        max(elapsed, 0.0),
        rules,
    )
    met = sum(1 for ok in result["criteria_met"].values() if ok)
    logger.info(
        f"[Mastery] Determination for {lesson_id}: mastered={result['has_mastered']} "
        f"({met}/{len(result['criteria_met'])} criteria)"
    )
    return result
