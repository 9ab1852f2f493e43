"""Base infrastructure for all agents."""

from .llm import get_llm, get_llm_for_structured_output
from .utils import history_to_langchain, log_agent_action, truncate_text

__all__ = [
    "get_llm",
    "get_llm_for_structured_output",
    "history_to_langchain",
    "log_agent_action",
    "truncate_text",
]
