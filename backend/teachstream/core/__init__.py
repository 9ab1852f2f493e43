"""Core configuration, errors and runtime helpers for the teachstream backend."""

from .background import BackgroundExecutor, get_background_executor
from .config import Settings, get_settings
from .errors import (
    GenerationFailedError,
    LessonNotFoundError,
    SpeechSynthesisError,
    TeachRequestError,
    UnknownAgentError,
)

__all__ = [
    "Settings",
    "get_settings",
    "BackgroundExecutor",
    "get_background_executor",
    "GenerationFailedError",
    "LessonNotFoundError",
    "SpeechSynthesisError",
    "TeachRequestError",
    "UnknownAgentError",
]
