"""Chat model clients for the teaching agents.

Each agent role reads its own model and temperature from settings:
specialists answer in raw JSON (streamed when possible), while the router,
validator and evidence extractor use structured output.
"""

from typing import Optional, Tuple

from langchain_openai import ChatOpenAI

from ...core.config import Settings, get_settings

ROLE_SPECIALIST = "specialist"
ROLE_ROUTER = "router"
ROLE_VALIDATOR = "validator"
ROLE_EVIDENCE = "evidence"


def _role_defaults(role: str, settings: Settings) -> Tuple[str, float]:
    """Model name and temperature for an agent role."""
    if role == ROLE_ROUTER:
        return settings.LLM_MODEL, settings.ROUTER_TEMPERATURE
    if role == ROLE_VALIDATOR:
        return settings.validator_model, settings.VALIDATOR_TEMPERATURE
    if role == ROLE_EVIDENCE:
        # Classification, not generation
        return settings.LLM_MODEL, 0.0
    if role == ROLE_SPECIALIST:
        return settings.LLM_MODEL, settings.LLM_TEMPERATURE
    raise ValueError(f"Unknown LLM role: {role}")


def _resolve_api_key(base_url: str, api_key: str) -> str:
    """Local OpenAI-compatible servers accept any non-empty key."""
    if api_key:
        return api_key
    base = (base_url or "").lower()
    if "127.0.0.1" in base or "localhost" in base:
        return "local"
    return ""


def get_llm(
    role: str = ROLE_SPECIALIST,
    streaming: bool = False,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """
    Build a chat model client for an agent role.

    Args:
        role: One of the ROLE_* constants
        streaming: Stream tokens (used by specialists for progressive audio)
        temperature: Override the role's temperature
        max_tokens: Override LLM_MAX_TOKENS

    Returns:
        Configured ChatOpenAI instance

    Raises:
        ValueError: If the role is unknown
    """
    settings = get_settings()
    model, role_temperature = _role_defaults(role, settings)

    return ChatOpenAI(
        base_url=settings.LLM_BASE_URL,
        api_key=_resolve_api_key(settings.LLM_BASE_URL, settings.LLM_API_KEY),
        model=model,
        temperature=temperature if temperature is not None else role_temperature,
        max_tokens=max_tokens or settings.LLM_MAX_TOKENS,
        streaming=streaming,
    )


def get_llm_for_structured_output(schema: type, role: str):
    """
    Get a runnable whose `ainvoke` returns a validated `schema` instance.

    Args:
        schema: Pydantic model class (RouterOutput, ValidationResult, ...)
        role: Agent role that owns the call
    """
    return get_llm(role=role).with_structured_output(schema)
