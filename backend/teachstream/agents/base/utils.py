"""Shared utilities for agent implementations."""

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, List, TypeVar

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")


def history_to_langchain(history: List[Dict[str, Any]]) -> List[BaseMessage]:
    """
    Convert stored turn history into alternating LangChain messages.

    Args:
        history: Oldest-first list of dicts with 'user_message' and 'ai_response'

    Returns:
        List of HumanMessage/AIMessage pairs
    """
    result: List[BaseMessage] = []
    for turn in history:
        user_message = turn.get("user_message")
        ai_response = turn.get("ai_response")
        if user_message:
            result.append(HumanMessage(content=user_message))
        if ai_response:
            result.append(AIMessage(content=ai_response))
    return result


def log_agent_action(agent_name: str):
    """
    Decorator to log agent entry points.

    Args:
        agent_name: Name of the agent for logging

    Usage:
        @log_agent_action("router")
        async def route(...):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger.debug(f"[{agent_name}] Starting {func.__name__}")
            try:
                result = await func(*args, **kwargs)
                logger.debug(f"[{agent_name}] Completed {func.__name__}")
                return result
            except Exception as e:
                logger.error(f"[{agent_name}] Error in {func.__name__}: {e}")
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger.debug(f"[{agent_name}] Starting {func.__name__}")
            try:
                result = func(*args, **kwargs)
                logger.debug(f"[{agent_name}] Completed {func.__name__}")
                return result
            except Exception as e:
                logger.error(f"[{agent_name}] Error in {func.__name__}: {e}")
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def truncate_text(text: str, max_length: int = 1000, suffix: str = "...") -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length (default 1000)
        suffix: Suffix to add when truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix
