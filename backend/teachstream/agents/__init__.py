"""teachstream agents package.

- base: LLM client factory and shared agent utilities
- teaching: router, specialists, handoff graph, validator and turn pipeline
"""

from .base import get_llm

__all__ = [
    "get_llm",
]
