"""
Test mastery scoring, cache invalidation, adaptive directives and profile enrichment.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from teachstream.agents.teaching.tools.profile import analyze_evidence_patterns, enrich_profile_if_needed, get_student_profile
from teachstream.mastery.cache import GenerationCache
from teachstream.mastery.directives import build_adaptive_directives, format_directives
from teachstream.mastery.evidence import record_mastery_evidence
from teachstream.mastery.tracker import (
    MasteryRules,
    compute_mastery_score,
    determine_mastery,
    evaluate_mastery,
    get_current_mastery_level,
    mastery_tier,
)

from conftest import LESSON_ID, SESSION_ID, USER_ID


class TestMasteryScore:
    """Answers decide the score when present, quality otherwise."""

    def test_answer_ratio(self):
        evidence = [
            ("correct_answer", {"quality_score": 90}),
            ("correct_answer", None),
            ("incorrect_answer", {"quality_score": 20}),
            ("explanation", {"quality_score": 10}),
        ]
        assert compute_mastery_score(evidence) == 67

    def test_mean_quality_without_answers(self):
        evidence = [
            ("explanation", {"quality_score": 80}),
            ("application", {"quality_score": 60}),
            ("struggle", {}),
        ]
        assert compute_mastery_score(evidence) == 70

    def test_default_without_evidence(self):
        assert compute_mastery_score([], default=50) == 50

    def test_tiers(self):
        assert mastery_tier(49) == "struggling"
        assert mastery_tier(50) == "learning"
        assert mastery_tier(79) == "learning"
        assert mastery_tier(80) == "mastering"


class TestMasteryRules:
    """Mastery requires every criterion at once."""

    def test_all_criteria_met(self):
        evidence = [("correct_answer", {"quality_score": 90})] * 3

        result = evaluate_mastery(evidence, time_spent_minutes=5)

        assert result["has_mastered"]
        assert all(result["criteria_met"].values())
        assert result["evidence"]["correct_answers"] == 3
        assert result["rules_applied"]["min_correct_answers"] == 3

    def test_too_little_time(self):
        evidence = [("correct_answer", {"quality_score": 90})] * 3

        result = evaluate_mastery(evidence, time_spent_minutes=1)

        assert not result["has_mastered"]
        assert result["criteria_met"]["time_spent"] is False

    def test_too_many_struggles(self):
        evidence = [("correct_answer", {"quality_score": 90})] * 3 + [("struggle", {"quality_score": 70})] * 3

        result = evaluate_mastery(evidence, time_spent_minutes=10, rules=MasteryRules(max_struggle_ratio=0.4))

        assert result["criteria_met"]["struggle_ratio"] is False
        assert not result["has_mastered"]


@pytest.mark.asyncio
class TestGenerationCache:
    """A write always wins over a cached or in-flight read."""

    async def test_loads_once_until_invalidated(self):
        cache = GenerationCache("test")
        loads = []

        async def loader():
            loads.append(1)
            return len(loads)

        assert await cache.get_or_load("k", loader) == 1
        assert await cache.get_or_load("k", loader) == 1
        cache.invalidate("k")
        assert await cache.get_or_load("k", loader) == 2

    async def test_load_spanning_an_invalidation_is_not_served(self):
        cache = GenerationCache("test")
        release = asyncio.Event()
        values = iter(["stale", "fresh"])

        async def slow_loader():
            value = next(values)
            if value == "stale":
                await release.wait()
            return value

        pending = asyncio.ensure_future(cache.get_or_load("k", slow_loader))
        await asyncio.sleep(0)
        cache.invalidate("k")
        release.set()

        assert await pending == "stale"
        assert cache.peek("k") is None
        assert await cache.get_or_load("k", slow_loader) == "fresh"
        assert cache.peek("k") == "fresh"

    async def test_loader_errors_are_not_cached(self):
        cache = GenerationCache("test")

        async def broken():
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            await cache.get_or_load("k", broken)
        assert cache.peek("k") is None


@pytest.mark.asyncio
class TestMasteryTracking:
    """Recorded evidence is visible to the very next mastery read."""

    async def test_evidence_write_invalidates_cached_score(self, db):
        assert await get_current_mastery_level(USER_ID, LESSON_ID) == 50

        result = await record_mastery_evidence(
            USER_ID, LESSON_ID, SESSION_ID, "correct_answer", "12", {"quality_score": 95},
        )
        assert result["success"]
        assert await get_current_mastery_level(USER_ID, LESSON_ID) == 100

        await record_mastery_evidence(USER_ID, LESSON_ID, SESSION_ID, "incorrect_answer", "11")
        assert await get_current_mastery_level(USER_ID, LESSON_ID) == 50

    async def test_unknown_evidence_type_is_rejected(self, db):
        result = await record_mastery_evidence(USER_ID, LESSON_ID, SESSION_ID, "guess", "maybe")

        assert not result["success"]
        assert "guess" in result["error"]

    async def test_determine_mastery_uses_session_time(self, db):
        for answer in ("12", "15", "20"):
            await record_mastery_evidence(
                USER_ID, LESSON_ID, SESSION_ID, "correct_answer", answer, {"quality_score": 90},
            )
        started = (datetime.utcnow() - timedelta(minutes=10)).isoformat()

        result = await determine_mastery(USER_ID, LESSON_ID, started)

        assert result["has_mastered"]
        assert result["evidence"]["time_spent_minutes"] >= 10

    async def test_determine_mastery_without_evidence(self, db):
        result = await determine_mastery(USER_ID, LESSON_ID, datetime.utcnow().isoformat())

        assert not result["has_mastered"]
        assert result["criteria_met"]["correct_answers"] is False


class TestAdaptiveDirectives:
    """Directive content follows mastery, style and recent struggle."""

    def test_mastery_status_comes_first(self):
        history = [
            {"user_message": "11?", "ai_response": "Not quite, try again."},
            {"user_message": "13?", "ai_response": "Incorrect, let's break this down."},
            {"user_message": "12?", "ai_response": "Yes! Well done."},
        ]
        directives = build_adaptive_directives(
            {"learning_style": "visual", "strengths": ["counting"], "struggles": []},
            history,
            30,
        )

        text = format_directives(directives)
        lines = text.splitlines()

        assert lines[0] == "ADAPTIVE TEACHING DIRECTIVES"
        assert lines[1] == "MASTERY STATUS: STRUGGLING (30%)"
        assert text.index("MASTERY STATUS") < text.index("VISUAL LEARNER")
        assert text.index("VISUAL LEARNER") < text.index("LOW MASTERY - SIMPLIFY")
        assert "HIGH STRUGGLE - MAXIMUM SCAFFOLDING" in text
        assert "STRENGTHS: counting." in text
        assert directives.encouragement_level == "high"
        assert lines[-2] == "ENCOURAGEMENT: HIGH"

    def test_high_mastery_accelerates(self):
        directives = build_adaptive_directives({"learning_style": "logical"}, [], 90)

        assert directives.tier == "mastering"
        assert directives.encouragement_level == "minimal"
        assert directives.phase_guidance[0] == "PHASE ACCELERATION:"
        assert "HIGH MASTERY - ACCELERATE:" in directives.difficulty_adjustments

    def test_unknown_style_adds_nothing(self):
        directives = build_adaptive_directives({"learning_style": "telepathic"}, [], 60)
        assert directives.style_adjustments == []

    def test_style_alias(self):
        directives = build_adaptive_directives({"learning_style": "Reading-Writing"}, [], 60)
        assert directives.style_adjustments[0] == "READING/WRITING LEARNER:"


class TestEvidencePatterns:
    """Repeated struggles and strong answers become profile topics."""

    def test_struggles_and_strengths(self):
        evidence = (
            [{"evidence_type": "struggle", "metadata": {"context": "Fractions"}}] * 2
            + [{"evidence_type": "incorrect_answer", "metadata": {"context": "Fractions"}}]
            + [{"evidence_type": "correct_answer", "metadata": {"context": "Counting", "quality_score": 85}}] * 2
            + [{"evidence_type": "correct_answer", "metadata": {"context": "Shapes", "quality_score": 60}}] * 2
            + [{"evidence_type": "struggle", "metadata": {}}] * 5
        )

        patterns = analyze_evidence_patterns(evidence)

        assert patterns == {"struggles": ["Fractions"], "strengths": ["Counting"]}


@pytest.mark.asyncio
class TestProfileEnrichment:
    """Enrichment merges new topics into the stored profile."""

    async def test_creates_profile_with_detected_struggle(self, db):
        for _ in range(3):
            await record_mastery_evidence(
                USER_ID, LESSON_ID, SESSION_ID, "struggle", "I don't get it", {"context": "Multiplication Basics"},
            )

        result = await enrich_profile_if_needed(USER_ID, SESSION_ID)
        again = await enrich_profile_if_needed(USER_ID, SESSION_ID)

        assert result["added_struggles"] == ["Multiplication Basics"]
        assert again["added_struggles"] == []
        profile = await get_student_profile(USER_ID)
        assert profile["struggles"] == ["Multiplication Basics"]

    async def test_no_patterns_leaves_profile_alone(self, db):
        result = await enrich_profile_if_needed(USER_ID, SESSION_ID)

        assert result == {"success": True, "added_struggles": [], "added_strengths": []}
        assert await get_student_profile(USER_ID) == {"strengths": [], "struggles": []}
