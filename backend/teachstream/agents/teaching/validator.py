"""Post-delivery response validation.

The validator runs after the student already has the response, so it never
delays a turn. A rejection becomes a pending correction for the next turn.
"""

import logging

from langchain_core.messages import HumanMessage, SystemMessage

from ..base.llm import ROLE_VALIDATOR, get_llm_for_structured_output
from ..base.utils import log_agent_action
from ...core.config import get_settings
from .prompts import VALIDATOR_SYSTEM_PROMPT, build_validation_prompt
from .state import VALIDATION_EXEMPT_AGENTS, AgentContext, AgentResponse, ValidationResult

logger = logging.getLogger(__name__)

FAIL_SAFE_ISSUE = "Validation system error - auto-approved as fail-safe"


def requires_validation(agent_name: str) -> bool:
    """Conversational and scoring roles are not fact-checked."""
    return agent_name not in VALIDATION_EXEMPT_AGENTS


class ResponseValidator:
    """Checks a delivered response for factual and pedagogical problems."""

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm_for_structured_output(ValidationResult, role=ROLE_VALIDATOR)
        return self._llm

    @log_agent_action("validator")
    async def validate(self, response: AgentResponse, context: AgentContext) -> ValidationResult:
        """
        Validate a response.

        Never raises: any validator error auto-approves with confidence 0.5.

        Args:
            response: Response the student received
            context: Turn context (grade, lesson objective)

        Returns:
            ValidationResult
        """
        threshold = get_settings().VALIDATION_APPROVAL_THRESHOLD
        messages = [
            SystemMessage(content=VALIDATOR_SYSTEM_PROMPT.format(threshold=threshold)),
            HumanMessage(content=build_validation_prompt(response, context)),
        ]

        try:
            result: ValidationResult = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(f"[validator] Validation failed for {response.agent_name}, auto-approving: {e}")
            return ValidationResult(
                approved=True,
                confidence_score=0.5,
                issues=[FAIL_SAFE_ISSUE],
                required_fixes=None,
            )

        if result.approved:
            logger.info(f"[validator] Approved {response.agent_name} ({result.confidence_score:.2f})")
        else:
            logger.warning(
                f"[validator] Rejected {response.agent_name} ({result.confidence_score:.2f}): "
                f"{'; '.join(result.issues)}"
            )
        return result
