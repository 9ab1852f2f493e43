"""State and data definitions for the teaching workflow.

Agent names, the response/routing/validation models exchanged between
agents, the per-turn agent context, and the TypedDict state carried by
the turn graph.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import TypedDict

from ...core.errors import UnknownAgentError


# ==============================================================================
# Agent names
# ==============================================================================

COORDINATOR = "coordinator"
MATH_SPECIALIST = "math_specialist"
SCIENCE_SPECIALIST = "science_specialist"
ENGLISH_SPECIALIST = "english_specialist"
HISTORY_SPECIALIST = "history_specialist"
ART_SPECIALIST = "art_specialist"
ASSESSOR = "assessor"
MOTIVATOR = "motivator"
VALIDATOR = "validator"

SPECIALIST_NAMES = (
    COORDINATOR,
    MATH_SPECIALIST,
    SCIENCE_SPECIALIST,
    ENGLISH_SPECIALIST,
    HISTORY_SPECIALIST,
    ART_SPECIALIST,
    ASSESSOR,
    MOTIVATOR,
)

AGENT_ALIASES: Dict[str, str] = {
    "math": MATH_SPECIALIST,
    "science": SCIENCE_SPECIALIST,
    "english": ENGLISH_SPECIALIST,
    "history": HISTORY_SPECIALIST,
    "art": ART_SPECIALIST,
    "assessment": ASSESSOR,
    "motivation": MOTIVATOR,
}

SUBJECT_TO_AGENT: Dict[str, str] = {
    "math": MATH_SPECIALIST,
    "science": SCIENCE_SPECIALIST,
    "english": ENGLISH_SPECIALIST,
    "history": HISTORY_SPECIALIST,
    "art": ART_SPECIALIST,
}

# Conversational or scoring roles whose output is not fact-checked
VALIDATION_EXEMPT_AGENTS = frozenset({COORDINATOR, MOTIVATOR, ASSESSOR})

AUTO_START_MARKER = "[AUTO_START]"
GENERIC_FALLBACK_RESPONSE = "I'm here to help! Could you tell me what you'd like to learn today?"
AUDIO_MEDIA_PLACEHOLDER = "[Audio/Media input]"


def resolve_agent_name(name: Optional[str]) -> str:
    """
    Normalize an agent name coming from a model or a client.

    Args:
        name: Raw name such as "math", "Math_Specialist" or "motivator"

    Returns:
        Canonical specialist name

    Raises:
        UnknownAgentError: If the name matches no specialist
    """
    key = (name or "").strip().lower().replace("-", "_").replace(" ", "_")
    if key in SPECIALIST_NAMES:
        return key
    if key in AGENT_ALIASES:
        return AGENT_ALIASES[key]
    raise UnknownAgentError(name or "")


def specialist_for_subject(subject: Optional[str]) -> str:
    """Map a lesson subject to its specialist, defaulting to math."""
    return SUBJECT_TO_AGENT.get((subject or "").strip().lower(), MATH_SPECIALIST)


# ==============================================================================
# Response models
# ==============================================================================

class AgentResponse(BaseModel):
    """A specialist's answer for one turn."""

    agent_name: str
    display_text: str = ""
    audio_text: str = ""
    svg: Optional[str] = None
    lesson_complete: bool = False
    teaching_phase: Optional[int] = None
    handoff_request: Optional[str] = None
    handoff_message: Optional[str] = None

    @property
    def is_completion_signal(self) -> bool:
        return self.lesson_complete and not self.audio_text and not self.display_text

    def snapshot(self) -> Dict[str, Any]:
        """The parts of the response a student actually saw and heard."""
        return {
            "audioText": self.audio_text,
            "displayText": self.display_text,
            "svg": self.svg,
        }


class SpecialistOutput(BaseModel):
    """JSON contract every specialist model must answer with."""

    model_config = ConfigDict(populate_by_name=True)

    audio_text: str = Field(default="", alias="audioText", description="Plain spoken text for speech synthesis")
    display_text: str = Field(default="", alias="displayText", description="Text shown on screen, may use markdown")
    svg: Optional[str] = Field(default=None, description="Optional SVG diagram markup")
    lesson_complete: bool = Field(default=False, alias="lessonComplete")
    teaching_phase: Optional[int] = Field(default=None, alias="teachingPhase", ge=1, le=5)
    handoff_request: Optional[str] = Field(
        default=None,
        alias="handoffRequest",
        description="Agent to hand the student to, e.g. motivator or assessor",
    )
    handoff_message: Optional[str] = Field(default=None, alias="handoffMessage")


class RoutingDecision(BaseModel):
    """Which agent answers the turn, or the coordinator's own direct answer."""

    target_agent: str
    reason: str
    handoff_message: Optional[str] = None
    direct_response: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        return bool(self.direct_response)


class RouterOutput(BaseModel):
    """Structured output requested from the coordinator when routing."""

    route_to: str = Field(description="Agent name to route to, or 'self' to answer directly")
    reason: str = Field(description="Why this agent was chosen")
    handoff_message: Optional[str] = Field(default=None, description="Short transition message for the student")
    response: Optional[str] = Field(default=None, description="Direct answer, only when route_to is 'self'")


class ValidationResult(BaseModel):
    """Validator verdict on a delivered response."""

    approved: bool = Field(description="Whether the response passed all validation checks")
    confidence_score: float = Field(
        ge=0.0,
        le=1.0,
        description="Confidence score (0.0-1.0). Threshold for approval: >= 0.80",
    )
    issues: List[str] = Field(default_factory=list, description="Specific issues found (empty if approved)")
    required_fixes: Optional[List[str]] = Field(
        default=None,
        description="Actionable fixes required if rejected (null if approved)",
    )


# ==============================================================================
# Turn context
# ==============================================================================

class UserProfileInfo(TypedDict, total=False):
    """Student profile fields used for personalization."""

    name: Optional[str]
    age: Optional[int]
    grade_level: Optional[int]
    learning_style: Optional[str]
    strengths: List[str]
    struggles: List[str]


class LessonInfo(TypedDict):
    """Lesson fields the agents see."""

    id: str
    title: str
    subject: str
    grade_level: int
    learning_objective: str


class HistoryTurn(TypedDict):
    """One past exchange in the session."""

    user_message: str
    ai_response: str
    timestamp: str


@dataclass
class MediaInput:
    """Audio or media attached to a turn, base64 encoded."""

    data: str
    mime_type: str
    kind: str  # "audio" | "image" | "video"


@dataclass
class AgentContext:
    """Everything a specialist needs to answer one turn."""

    user_id: str
    session_id: str
    lesson_id: str
    user_profile: UserProfileInfo
    lesson: LessonInfo
    conversation_history: List[HistoryTurn] = field(default_factory=list)
    adaptive_instructions: str = ""
    previous_agent: Optional[str] = None
    attachments: List[MediaInput] = field(default_factory=list)


# ==============================================================================
# Graph state
# ==============================================================================

class TeachingState(TypedDict, total=False):
    """State carried through the route -> respond -> handoff graph."""

    # Inputs
    message: str
    context: AgentContext
    active_specialist: Optional[str]

    # Routing
    decision: RoutingDecision

    # Response chain
    response: AgentResponse
    visited: List[str]
    hops: int
    streamed: bool
    chain_aborted: bool
    routing_reason: str


# ==============================================================================
# Turn request
# ==============================================================================

@dataclass
class TurnRequest:
    """A validated student turn."""

    user_id: str
    session_id: str
    lesson_id: str
    user_message: str = ""
    attachments: List[MediaInput] = field(default_factory=list)

    @property
    def has_media(self) -> bool:
        return bool(self.attachments)

    @property
    def logged_message(self) -> str:
        """Message text stored in history; media-only turns get a placeholder."""
        return self.user_message or AUDIO_MEDIA_PLACEHOLDER
