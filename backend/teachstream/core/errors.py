"""Exception types raised inside the teaching pipeline."""


class TeachRequestError(ValueError):
    """A turn request failed input validation."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LessonNotFoundError(LookupError):
    """The lesson referenced by a turn does not exist."""

    def __init__(self, lesson_id: str):
        super().__init__(f"Failed to fetch lesson: {lesson_id} not found")
        self.lesson_id = lesson_id


class UnknownAgentError(KeyError):
    """An agent name could not be resolved to a known specialist."""

    def __init__(self, agent_name: str):
        super().__init__(agent_name)
        self.agent_name = agent_name

    def __str__(self) -> str:
        return f"Unknown agent: {self.agent_name}"


class GenerationFailedError(RuntimeError):
    """Both the streaming and non-streaming generation attempts failed."""

    def __init__(self, agent_name: str, cause: Exception):
        super().__init__(f"Failed to generate a response from {agent_name}: {cause}")
        self.agent_name = agent_name
        self.cause = cause


class SpeechSynthesisError(RuntimeError):
    """A single speech synthesis call failed."""


def is_llm_quota_error(exc: Exception) -> bool:
    """Detect provider quota/rate-limit errors from OpenAI-compatible backends."""
    text = str(exc).lower()
    return (
        "error code: 429" in text
        or "insufficient balance" in text
        or "insufficient_quota" in text
        or "please recharge" in text
        or "rate limit reached" in text
    )


def is_llm_connection_error(exc: Exception) -> bool:
    """Detect upstream LLM connectivity issues."""
    text = str(exc).lower()
    return (
        "connection error" in text
        or "connecterror" in text
        or "connection refused" in text
        or "failed to establish a new connection" in text
    )


TURN_FAILED_MESSAGE = "Failed to process teaching request"


def user_facing_error_message(exc: Exception) -> str:
    """Short terminal-error text for the client."""
    if isinstance(exc, (TeachRequestError, LessonNotFoundError)):
        return str(exc)
    cause = exc.cause if isinstance(exc, GenerationFailedError) else exc
    if is_llm_quota_error(cause):
        return "The AI provider is rate limiting requests right now. Please wait a moment and try again."
    if is_llm_connection_error(cause):
        return "I can't reach the AI service right now. Please try again shortly."
    return TURN_FAILED_MESSAGE
