"""
Test the response validator, evidence extraction and the pending-correction store.
"""

import pytest

from teachstream.agents.teaching.evidence import NEUTRAL_EVIDENCE, EvidenceExtractor, EvidenceQuality
from teachstream.agents.teaching.state import AgentResponse, ValidationResult
from teachstream.agents.teaching.validator import FAIL_SAFE_ISSUE, ResponseValidator, requires_validation
from teachstream.corrections.store import PendingCorrectionStore

from conftest import SESSION_ID, FakeStructuredLLM, make_context

WRONG = AgentResponse(
    agent_name="math_specialist",
    display_text="3 x 4 = 11",
    audio_text="Three times four is eleven.",
)

REJECTED = ValidationResult(
    approved=False,
    confidence_score=0.2,
    issues=["3 x 4 is 12, not 11"],
    required_fixes=["State that 3 x 4 = 12"],
)


class TestValidationScope:
    """Only subject specialists are fact-checked."""

    def test_exempt_roles(self):
        assert not requires_validation("coordinator")
        assert not requires_validation("motivator")
        assert not requires_validation("assessor")

    def test_subject_specialists(self):
        for name in ("math_specialist", "science_specialist", "english_specialist", "history_specialist", "art_specialist"):
            assert requires_validation(name)


@pytest.mark.asyncio
class TestResponseValidator:
    """The validator never raises into the turn."""

    async def test_passes_model_verdict_through(self):
        llm = FakeStructuredLLM(REJECTED)
        validator = ResponseValidator(llm=llm)

        result = await validator.validate(WRONG, make_context())

        assert result == REJECTED
        system, human = llm.calls[0]
        assert "0.80" in system.content
        assert "3 x 4 = 11" in human.content

    async def test_model_error_auto_approves(self):
        validator = ResponseValidator(llm=FakeStructuredLLM(error=RuntimeError("timeout")))

        result = await validator.validate(WRONG, make_context())

        assert result.approved
        assert result.confidence_score == 0.5
        assert result.issues == [FAIL_SAFE_ISSUE]
        assert result.required_fixes is None


@pytest.mark.asyncio
class TestEvidenceExtractor:
    """Extraction failures fall back to a verdict that will not be recorded."""

    async def test_returns_model_verdict(self):
        verdict = EvidenceQuality(evidence_type="correct_answer", quality_score=90, confidence=0.9)
        extractor = EvidenceExtractor(llm=FakeStructuredLLM(verdict))

        assert await extractor.extract("12", "What is 3 x 4?", "Multiplication") == verdict

    async def test_model_error_is_neutral(self):
        extractor = EvidenceExtractor(llm=FakeStructuredLLM(error=RuntimeError("bad json")))

        result = await extractor.extract("12", "What is 3 x 4?", "Multiplication")

        assert result == NEUTRAL_EVIDENCE
        assert result.confidence < 0.7


@pytest.mark.asyncio
class TestPendingCorrectionStore:
    """Corrections come back oldest first and are delivered at most once."""

    async def test_save_and_fetch(self, db):
        store = PendingCorrectionStore()

        saved = await store.save_pending_correction(SESSION_ID, "math_specialist", WRONG, REJECTED)
        correction = await store.get_pending_correction(SESSION_ID)

        assert saved["success"]
        assert correction["id"] == saved["correction_id"]
        assert correction["original_response"] == {
            "audioText": "Three times four is eleven.",
            "displayText": "3 x 4 = 11",
            "svg": None,
        }
        assert correction["required_fixes"] == ["State that 3 x 4 = 12"]
        assert correction["status"] == "pending"

    async def test_oldest_first_and_delivered_once(self, db):
        store = PendingCorrectionStore()
        first = await store.save_pending_correction(SESSION_ID, "math_specialist", WRONG, REJECTED)
        second = await store.save_pending_correction(SESSION_ID, "science_specialist", WRONG, REJECTED)

        assert (await store.get_pending_correction(SESSION_ID))["id"] == first["correction_id"]

        assert (await store.mark_correction_delivered(first["correction_id"]))["updated"] == 1
        assert (await store.mark_correction_delivered(first["correction_id"]))["updated"] == 0

        assert (await store.get_pending_correction(SESSION_ID))["id"] == second["correction_id"]

    async def test_other_sessions_are_isolated(self, db):
        store = PendingCorrectionStore()
        await store.save_pending_correction("other-session", "math_specialist", WRONG, REJECTED)

        assert await store.get_pending_correction(SESSION_ID) is None

    async def test_failure_log(self, db):
        store = PendingCorrectionStore()

        result = await store.log_validation_failure(SESSION_ID, "math_specialist", WRONG, REJECTED)

        assert result == {"success": True}


@pytest.mark.asyncio
class TestCorrectionStoreFailures:
    """A broken database is reported in the return value, never raised."""

    async def test_writes_report_failure(self, broken_store_db):
        store = PendingCorrectionStore()

        saved = await store.save_pending_correction(SESSION_ID, "math_specialist", WRONG, REJECTED)
        logged = await store.log_validation_failure(SESSION_ID, "math_specialist", WRONG, REJECTED)
        marked = await store.mark_correction_delivered(1)

        for result in (saved, logged, marked):
            assert result["success"] is False
            assert result["error"] == "database unavailable"

    async def test_read_returns_none(self, broken_store_db):
        store = PendingCorrectionStore()

        assert await store.get_pending_correction(SESSION_ID) is None
