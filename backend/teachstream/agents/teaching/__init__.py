"""Teaching Agents - multi-specialist streaming lesson delivery.

This package provides the teaching workflow:
- Router: keeps the active specialist or asks the coordinator who answers
- Specialists: coordinator, subject specialists, assessor and motivator
- Turn graph: route -> respond -> bounded handoff chain
- Validator: background fact-check of subject specialist answers

The turn pipeline itself lives in `turn` and is imported directly by the API.
"""

from .graph import TeachingGraph
from .router import AgentRouter, signals_topic_change
from .specialists import AgentInvoker, Specialist, SpecialistRegistry, build_default_registry
from .state import (
    AgentContext,
    AgentResponse,
    RoutingDecision,
    TeachingState,
    TurnRequest,
    ValidationResult,
    resolve_agent_name,
)
from .validator import ResponseValidator, requires_validation

__all__ = [
    # Graph
    "TeachingGraph",
    "AgentRouter",
    "signals_topic_change",
    # Specialists
    "AgentInvoker",
    "Specialist",
    "SpecialistRegistry",
    "build_default_registry",
    # State
    "AgentContext",
    "AgentResponse",
    "RoutingDecision",
    "TeachingState",
    "TurnRequest",
    "ValidationResult",
    "resolve_agent_name",
    # Validation
    "ResponseValidator",
    "requires_validation",
]
