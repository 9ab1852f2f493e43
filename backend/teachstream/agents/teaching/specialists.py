"""Specialist agents and the agent invoker.

Every teaching role (coordinator, subject specialists, assessor, motivator)
is a `Specialist` configured with its own system prompt. They share one
capability interface:

    invoke(message, context) -> AgentResponse
    supports_streaming() -> bool
    stream(message, context, on_sentence) -> AgentResponse

`AgentInvoker` prefers streaming and falls back to a single non-streaming
attempt when the stream fails.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from ...core.errors import GenerationFailedError, UnknownAgentError
from ..base.llm import ROLE_SPECIALIST, get_llm
from ..base.utils import history_to_langchain, log_agent_action
from .parsing import (
    SentenceExtractor,
    build_agent_response,
    decode_specialist_output,
    ensure_speakable,
    parse_specialist_output,
)
from .prompts import build_dynamic_context, get_specialist_system_prompt
from .state import (
    SPECIALIST_NAMES,
    AgentContext,
    AgentResponse,
    MediaInput,
    resolve_agent_name,
)

logger = logging.getLogger(__name__)

OnSentence = Callable[[str, int], None]


class SentenceSink(Protocol):
    """Receives sentences as they complete during streaming."""

    def bind_agent(self, agent_name: str) -> None: ...

    def submit(self, sentence: str) -> None: ...

    def discard(self) -> None: ...


def _chunk_text(content: Any) -> str:
    """Text carried by a streamed message chunk."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return ""


def _attachment_part(attachment: MediaInput) -> Dict[str, Any]:
    """OpenAI-style content part for an audio/image/video attachment."""
    if attachment.kind == "audio":
        audio_format = attachment.mime_type.split("/")[-1].replace("mpeg", "mp3").replace("x-wav", "wav")
        return {
            "type": "input_audio",
            "input_audio": {"data": attachment.data, "format": audio_format},
        }
    data_url = f"data:{attachment.mime_type};base64,{attachment.data}"
    if attachment.kind == "video":
        return {"type": "video_url", "video_url": {"url": data_url}}
    return {"type": "image_url", "image_url": {"url": data_url}}


def build_human_message(message: str, attachments: Iterable[MediaInput]) -> HumanMessage:
    """Student message, multimodal when audio or media is attached."""
    attachments = list(attachments)
    if not attachments:
        return HumanMessage(content=message)

    text = message or "The student sent this instead of typing. Respond to what they said or showed."
    parts: List[Any] = [{"type": "text", "text": text}]
    parts.extend(_attachment_part(a) for a in attachments)
    return HumanMessage(content=parts)


class Specialist:
    """
    A teaching role backed by a chat model.

    The model is asked for a JSON object (see RESPONSE_FORMAT_INSTRUCTIONS);
    streaming mode watches the "audioText" field and reports each sentence
    as soon as it is complete.
    """

    def __init__(
        self,
        name: str,
        system_prompt: Optional[str] = None,
        llm: Optional[BaseChatModel] = None,
        streaming_llm: Optional[BaseChatModel] = None,
    ):
        self.name = name
        self.system_prompt = system_prompt or get_specialist_system_prompt(name)
        self._llm = llm
        self._streaming_llm = streaming_llm

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_llm(role=ROLE_SPECIALIST)
        return self._llm

    @property
    def streaming_llm(self) -> BaseChatModel:
        if self._streaming_llm is None:
            self._streaming_llm = get_llm(role=ROLE_SPECIALIST, streaming=True)
        return self._streaming_llm

    def supports_streaming(self) -> bool:
        return True

    def build_messages(self, message: str, context: AgentContext) -> List[BaseMessage]:
        system = f"{self.system_prompt}\n\n{build_dynamic_context(context)}"
        return [
            SystemMessage(content=system),
            *history_to_langchain(context.conversation_history),
            build_human_message(message, context.attachments),
        ]

    async def invoke(self, message: str, context: AgentContext) -> AgentResponse:
        """Generate a complete response in one call."""
        result = await self.llm.ainvoke(self.build_messages(message, context))
        return parse_specialist_output(self.name, _chunk_text(result.content))

    async def stream(
        self,
        message: str,
        context: AgentContext,
        on_sentence: OnSentence,
    ) -> AgentResponse:
        """
        Generate a response while reporting completed audio sentences.

        Args:
            message: Student message
            context: Turn context
            on_sentence: Called once per sentence with (sentence, index)

        Returns:
            The full parsed response once the stream ends
        """
        extractor = SentenceExtractor()
        buffer = ""
        index = 0

        async for chunk in self.streaming_llm.astream(self.build_messages(message, context)):
            text = _chunk_text(chunk.content)
            if not text:
                continue
            buffer += text
            for sentence in extractor.feed(buffer):
                on_sentence(sentence, index)
                index += 1

        output = decode_specialist_output(buffer)
        for sentence in extractor.finish(output.audio_text):
            on_sentence(sentence, index)
            index += 1

        logger.debug(f"[{self.name}] Streamed {index} sentences ({len(buffer)} chars)")
        return ensure_speakable(build_agent_response(self.name, output))


class SpecialistRegistry:
    """Closed set of specialist variants, looked up by canonical name or alias."""

    def __init__(self, specialists: Iterable[Specialist]):
        self._specialists: Dict[str, Specialist] = {s.name: s for s in specialists}

    def get(self, name: str) -> Specialist:
        canonical = resolve_agent_name(name)
        specialist = self._specialists.get(canonical)
        if specialist is None:
            raise UnknownAgentError(name)
        return specialist

    def __contains__(self, name: str) -> bool:
        try:
            self.get(name)
        except UnknownAgentError:
            return False
        return True

    @property
    def names(self) -> List[str]:
        return list(self._specialists)


def build_default_registry() -> SpecialistRegistry:
    """One Specialist per teaching role, sharing the configured chat backend."""
    return SpecialistRegistry(Specialist(name) for name in SPECIALIST_NAMES)


class AgentInvoker:
    """Calls specialists, streaming when possible."""

    def __init__(self, registry: SpecialistRegistry):
        self.registry = registry

    @log_agent_action("invoker")
    async def invoke(
        self,
        agent_name: str,
        message: str,
        context: AgentContext,
        sentence_sink: Optional[SentenceSink] = None,
    ) -> AgentResponse:
        """
        Get a response from a specialist.

        With a sentence sink and a streaming-capable specialist, sentences are
        pushed to the sink while the response is generated. If streaming fails
        the sink is discarded and the specialist is called once more without
        streaming.

        Raises:
            UnknownAgentError: If the agent name is not a known specialist
            GenerationFailedError: If the non-streaming attempt also fails
        """
        specialist = self.registry.get(agent_name)

        if sentence_sink is not None and specialist.supports_streaming():
            sentence_sink.bind_agent(specialist.name)
            try:
                return await specialist.stream(
                    message,
                    context,
                    lambda sentence, _index: sentence_sink.submit(sentence),
                )
            except Exception as e:
                logger.warning(
                    f"[invoker] Streaming failed for {specialist.name}, falling back to non-streaming: {e}"
                )
                sentence_sink.discard()

        try:
            return await specialist.invoke(message, context)
        except Exception as e:
            raise GenerationFailedError(specialist.name, e) from e
