"""Evidence extraction: classify a student's message as learning evidence."""

import logging

from pydantic import BaseModel, Field

from ..base.llm import ROLE_EVIDENCE, get_llm_for_structured_output
from ..base.utils import log_agent_action
from .prompts import build_evidence_prompt

logger = logging.getLogger(__name__)


class EvidenceQuality(BaseModel):
    """Structured verdict on one student message."""

    evidence_type: str = Field(
        description="One of: correct_answer, incorrect_answer, explanation, application, struggle"
    )
    quality_score: int = Field(ge=0, le=100, description="Quality of the student's response (0-100)")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence in this classification (0-1)")
    reasoning: str = Field(default="", description="Short justification")


NEUTRAL_EVIDENCE = EvidenceQuality(
    evidence_type="explanation",
    quality_score=50,
    confidence=0.3,
    reasoning="Extraction unavailable",
)


class EvidenceExtractor:
    """Uses the chat model to turn a student message into scored evidence."""

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm_for_structured_output(EvidenceQuality, role=ROLE_EVIDENCE)
        return self._llm

    @log_agent_action("evidence")
    async def extract(self, student_response: str, tutor_response: str, concept: str) -> EvidenceQuality:
        """
        Classify a student message.

        Returns the neutral low-confidence verdict on any model error; the
        caller's confidence threshold keeps it from being recorded.
        """
        try:
            return await self.llm.ainvoke(build_evidence_prompt(student_response, tutor_response, concept))
        except Exception as e:
            logger.warning(f"[evidence] Extraction failed, using neutral verdict: {e}")
            return NEUTRAL_EVIDENCE
