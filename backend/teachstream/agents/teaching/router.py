"""Routing: decide which agent answers a student message.

Order of checks:
1. Active specialist and no topic change -> keep the specialist (no LLM call)
2. No text (audio/media only) -> specialist for the lesson subject
3. Coordinator model decides, possibly answering trivial messages itself
4. Any routing error -> generic direct response from the coordinator
"""

import logging
import re
from typing import Optional

from ..base.llm import ROLE_ROUTER, get_llm_for_structured_output
from ..base.utils import log_agent_action
from ...core.errors import UnknownAgentError
from .prompts import build_routing_prompt
from .state import (
    COORDINATOR,
    GENERIC_FALLBACK_RESPONSE,
    AgentContext,
    LessonInfo,
    RouterOutput,
    RoutingDecision,
    resolve_agent_name,
    specialist_for_subject,
)

logger = logging.getLogger(__name__)

TOPIC_CHANGE_PHRASES = (
    "new topic",
    "different topic",
    "another topic",
    "something else",
    "something different",
    "change the subject",
    "change subject",
    "switch to",
    "switch subjects",
    "can we talk about",
    "let's learn about",
    "lets learn about",
    "i want to learn about",
    "teach me about",
    "stop this lesson",
)

SUBJECT_KEYWORDS = {
    "math": ("math", "maths", "fraction", "multiplication", "division", "algebra", "geometry"),
    "science": ("science", "biology", "chemistry", "physics", "planet", "experiment"),
    "english": ("english", "grammar", "spelling", "vocabulary", "reading", "writing"),
    "history": ("history", "historical", "ancient", "war", "empire"),
    "art": ("art", "drawing", "painting", "colour", "color", "sketch"),
}


def signals_topic_change(message: str, current_subject: Optional[str] = None) -> bool:
    """
    Whether a message asks to leave the current topic.

    Explicit phrases always count. A mention of another subject counts only
    when combined with a request verb, so "the war started in 1914" inside a
    history lesson is not a switch, but "can we do science" in math is.
    """
    text = (message or "").lower()
    if not text:
        return False
    if any(phrase in text for phrase in TOPIC_CHANGE_PHRASES):
        return True

    current = (current_subject or "").lower()
    asks = re.search(r"\b(instead|rather|can we|could we|let'?s|i want|switch)\b", text)
    if not asks:
        return False
    for subject, keywords in SUBJECT_KEYWORDS.items():
        if subject == current:
            continue
        if any(re.search(rf"\b{re.escape(word)}\b", text) for word in keywords):
            return True
    return False


class AgentRouter:
    """Chooses the responding agent for a turn."""

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm_for_structured_output(RouterOutput, role=ROLE_ROUTER)
        return self._llm

    @log_agent_action("router")
    async def route(
        self,
        message: str,
        context: AgentContext,
        active_specialist: Optional[str],
        lesson: LessonInfo,
    ) -> RoutingDecision:
        """
        Decide the responding agent.

        Args:
            message: Student text (empty for audio/media-only turns)
            context: Turn context
            active_specialist: Specialist that answered the previous turn, if any
            lesson: Current lesson

        Returns:
            RoutingDecision; `direct_response` is set when the coordinator
            answers without invoking a specialist
        """
        if active_specialist and active_specialist != COORDINATOR:
            if not signals_topic_change(message, lesson.get("subject")):
                logger.info(f"[router] Fast path: continuing with {active_specialist}")
                return RoutingDecision(
                    target_agent=active_specialist,
                    reason=f"Continuing with {active_specialist}",
                )
            logger.info(f"[router] Topic change detected, leaving {active_specialist}")

        if not message or not message.strip():
            target = specialist_for_subject(lesson.get("subject"))
            return RoutingDecision(
                target_agent=target,
                reason=f"Routed to {target} based on lesson subject (audio/media input)",
            )

        try:
            output: RouterOutput = await self.llm.ainvoke(build_routing_prompt(message, context))
        except Exception as e:
            logger.error(f"[router] Routing inference failed, answering directly: {e}")
            return RoutingDecision(
                target_agent=COORDINATOR,
                reason="Routing failed - generic coordinator response",
                direct_response=GENERIC_FALLBACK_RESPONSE,
            )

        return self._to_decision(output, lesson)

    def _to_decision(self, output: RouterOutput, lesson: LessonInfo) -> RoutingDecision:
        route_to = (output.route_to or "").strip().lower()

        if route_to in ("self", COORDINATOR):
            if output.response:
                return RoutingDecision(
                    target_agent=COORDINATOR,
                    reason=output.reason,
                    direct_response=output.response,
                )
            # Coordinator chose itself without writing an answer
            return RoutingDecision(target_agent=COORDINATOR, reason=output.reason)

        try:
            target = resolve_agent_name(route_to)
        except UnknownAgentError:
            target = specialist_for_subject(lesson.get("subject"))
            logger.warning(f"[router] Unknown route '{output.route_to}', using {target}")
            return RoutingDecision(
                target_agent=target,
                reason=f"Unknown route '{output.route_to}', defaulted to lesson subject",
                handoff_message=output.handoff_message,
            )

        return RoutingDecision(
            target_agent=target,
            reason=output.reason,
            handoff_message=output.handoff_message,
        )
