"""Speech synthesis client for an OpenAI-compatible /audio/speech endpoint.

Each teaching role speaks with its own voice so students can tell who is
talking after a handoff.
"""

import base64
import logging
from typing import Dict, Optional, Protocol

import httpx

from ..core.config import get_settings
from ..core.errors import SpeechSynthesisError

logger = logging.getLogger(__name__)

AGENT_VOICE_MAP: Dict[str, str] = {
    "coordinator": "nova",
    "math_specialist": "echo",
    "science_specialist": "fable",
    "english_specialist": "shimmer",
    "history_specialist": "onyx",
    "art_specialist": "alloy",
    "assessor": "shimmer",
    "motivator": "fable",
}


class SpeechSynthesizer(Protocol):
    """Anything that can turn one chunk of text into base64 audio."""

    async def synthesize(self, text: str, agent_name: Optional[str] = None) -> str: ...


class OpenAISpeechSynthesizer:
    """
    Synthesizes speech through an OpenAI-compatible HTTP endpoint.

    Works with OpenAI itself and with local servers exposing the same
    route (Kokoro-FastAPI, openedai-speech, LocalAI).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        default_voice: Optional[str] = None,
        response_format: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.TTS_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.TTS_API_KEY
        self.model = model or settings.TTS_MODEL
        self.default_voice = default_voice or settings.TTS_DEFAULT_VOICE
        self.response_format = response_format or settings.TTS_RESPONSE_FORMAT
        self.timeout = timeout or settings.TTS_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def voice_for(self, agent_name: Optional[str]) -> str:
        return AGENT_VOICE_MAP.get(agent_name or "", self.default_voice)

    async def synthesize(self, text: str, agent_name: Optional[str] = None) -> str:
        """
        Synthesize one chunk of text.

        Args:
            text: Text to speak
            agent_name: Speaking agent, selects the voice

        Returns:
            Base64-encoded audio in the configured format

        Raises:
            SpeechSynthesisError: On empty input or any upstream failure
        """
        if not text or not text.strip():
            raise SpeechSynthesisError("Text input is required and must be a non-empty string")

        payload = {
            "model": self.model,
            "voice": self.voice_for(agent_name),
            "input": text,
            "response_format": self.response_format,
        }

        try:
            response = await self.client.post("/audio/speech", json=payload)
        except httpx.HTTPError as e:
            raise SpeechSynthesisError(f"Speech request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Speech synthesis error {response.status_code}: {response.text[:200]}")
            raise SpeechSynthesisError(f"Speech endpoint returned {response.status_code}")

        if not response.content:
            raise SpeechSynthesisError("No audio content received from speech endpoint")

        return base64.b64encode(response.content).decode("ascii")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Singleton instance sharing one connection pool
_speech_synthesizer: Optional[OpenAISpeechSynthesizer] = None


def get_speech_synthesizer() -> OpenAISpeechSynthesizer:
    """Get or create the speech synthesizer singleton."""
    global _speech_synthesizer
    if _speech_synthesizer is None:
        _speech_synthesizer = OpenAISpeechSynthesizer()
    return _speech_synthesizer


async def close_speech_synthesizer() -> None:
    global _speech_synthesizer
    if _speech_synthesizer is not None:
        await _speech_synthesizer.aclose()
        _speech_synthesizer = None
