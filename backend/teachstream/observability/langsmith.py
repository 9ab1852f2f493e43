"""LangSmith tracing setup and runnable-config helpers for teaching turns."""

import logging
import os
from typing import Any, Dict, Iterable, Optional

from ..core.config import Settings

logger = logging.getLogger(__name__)

# Settings attribute -> environment variables read by langsmith/langchain.
_ENV_EXPORTS = {
    "LANGSMITH_API_KEY": ("LANGSMITH_API_KEY", "LANGCHAIN_API_KEY"),
    "LANGSMITH_ENDPOINT": ("LANGSMITH_ENDPOINT", "LANGCHAIN_ENDPOINT"),
    "LANGSMITH_PROJECT": ("LANGSMITH_PROJECT", "LANGCHAIN_PROJECT"),
    "LANGSMITH_WORKSPACE_ID": ("LANGSMITH_WORKSPACE_ID",),
}


def initialize_langsmith(settings: Settings) -> bool:
    """
    Export LangSmith settings to the environment.

    Tracing is only switched on when it is requested and an API key is set,
    so a missing key never makes the graph try to upload runs.

    Returns:
        True when tracing is active, else False.
    """
    tracing_enabled = bool(settings.LANGSMITH_TRACING) and bool(settings.LANGSMITH_API_KEY.strip())

    os.environ["LANGSMITH_TRACING"] = "true" if tracing_enabled else "false"
    os.environ["LANGCHAIN_TRACING_V2"] = "true" if tracing_enabled else "false"

    for attr, env_names in _ENV_EXPORTS.items():
        value = getattr(settings, attr, "")
        if not value:
            continue
        for env_name in env_names:
            os.environ[env_name] = value

    if tracing_enabled:
        logger.info(
            f"LangSmith tracing enabled for project '{settings.LANGSMITH_PROJECT}' "
            f"({settings.LANGSMITH_ENDPOINT})"
        )
    elif settings.LANGSMITH_TRACING:
        logger.warning("LANGSMITH_TRACING is set but LANGSMITH_API_KEY is empty; tracing disabled")
    else:
        logger.info("LangSmith tracing disabled")

    return tracing_enabled


def build_trace_config(
    thread_id: str,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a runnable config for one teaching turn.

    Args:
        thread_id: Lesson session id; groups every run of a session in LangSmith
        tags: Extra run tags
        metadata: Extra run metadata (user, lesson, ...)
        config: Base config to extend; its `configurable` entries (such as
            the sentence sink) are preserved

    Returns:
        A new config dict, the base config is not mutated
    """
    config = dict(config or {})

    configurable = dict(config.get("configurable", {}))
    configurable["thread_id"] = thread_id
    config["configurable"] = configurable

    merged_tags = list(config.get("tags", []))
    for tag in tags or ():
        if tag not in merged_tags:
            merged_tags.append(tag)
    if merged_tags:
        config["tags"] = merged_tags

    merged_metadata = {"session_id": thread_id, **dict(config.get("metadata", {}))}
    if metadata:
        merged_metadata.update({k: v for k, v in metadata.items() if v is not None})
    config["metadata"] = merged_metadata

    return config
