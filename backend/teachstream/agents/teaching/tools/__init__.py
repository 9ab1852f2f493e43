"""Persistence tools used by the teaching turn pipeline."""

from .profile import (
    analyze_evidence_patterns,
    enrich_profile_if_needed,
    get_student_profile,
    log_adaptation,
)
from .session import (
    create_session,
    end_session,
    get_recent_history,
    get_session,
    save_agent_interaction,
    save_interaction,
    set_active_specialist,
)

__all__ = [
    "analyze_evidence_patterns",
    "enrich_profile_if_needed",
    "get_student_profile",
    "log_adaptation",
    "create_session",
    "end_session",
    "get_recent_history",
    "get_session",
    "save_agent_interaction",
    "save_interaction",
    "set_active_specialist",
]
