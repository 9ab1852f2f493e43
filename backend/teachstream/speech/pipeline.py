"""Progressive speech synthesis.

Sentences arrive while the model is still generating. Each one is scheduled
for synthesis immediately, and `flush` hands the results back strictly in
emission order no matter which synthesis call finishes first.

When nothing was streamed (handoff, streaming failure, direct coordinator
answer) `synthesize_in_batches` covers the whole audio text instead.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

from ..core.config import get_settings
from .chunking import split_into_sentences, split_long_sentence
from .synthesizer import SpeechSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class AudioChunk:
    """One synthesized unit; audio is None when synthesis failed."""
    index: int
    text: str
    audio: Optional[str]


async def _synthesize_unit(
    synthesizer: SpeechSynthesizer,
    text: str,
    agent_name: Optional[str],
    semaphore: Optional[asyncio.Semaphore] = None,
) -> Optional[str]:
    """Synthesize one unit, turning any failure into None."""
    try:
        if semaphore is None:
            return await synthesizer.synthesize(text, agent_name)
        async with semaphore:
            return await synthesizer.synthesize(text, agent_name)
    except Exception as e:
        logger.warning(f"[speech] Synthesis failed for chunk '{text[:40]}': {e}")
        return None


class ProgressiveSynthesisPipeline:
    """
    Per-turn sentence sink backed by concurrent synthesis tasks.

    Implements the SentenceSink interface used by the agent invoker.
    """

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        agent_name: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        max_chunk_length: Optional[int] = None,
    ):
        settings = get_settings()
        self.synthesizer = synthesizer
        self.agent_name = agent_name
        self.max_chunk_length = max_chunk_length or settings.TTS_MAX_CHUNK_LENGTH
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.TTS_MAX_CONCURRENCY)
        self._slots: List[tuple] = []

    @property
    def has_slots(self) -> bool:
        return bool(self._slots)

    @property
    def slot_count(self) -> int:
        return len(self._slots)

    def bind_agent(self, agent_name: str) -> None:
        """Set the speaking agent; must happen before the first sentence."""
        self.agent_name = agent_name

    def submit(self, sentence: str) -> None:
        """Schedule synthesis for a completed sentence."""
        for text in split_long_sentence(sentence.strip(), self.max_chunk_length):
            if not text:
                continue
            task = asyncio.ensure_future(
                _synthesize_unit(self.synthesizer, text, self.agent_name, self._semaphore)
            )
            self._slots.append((text, task))

    def discard(self) -> None:
        """Cancel outstanding synthesis and forget every slot."""
        for _, task in self._slots:
            if not task.done():
                task.cancel()
        if self._slots:
            logger.info(f"[speech] Discarded {len(self._slots)} streamed audio slots")
        self._slots = []

    async def flush(self) -> AsyncIterator[AudioChunk]:
        """
        Yield every slot in emission order.

        Yields:
            AudioChunk per slot; a failed unit carries audio=None
        """
        slots, self._slots = self._slots, []
        try:
            for index, (text, task) in enumerate(slots):
                try:
                    audio = await task
                except asyncio.CancelledError:
                    if not task.cancelled():
                        raise
                    audio = None
                yield AudioChunk(index=index, text=text, audio=audio)
        finally:
            # Slots not yet yielded when the consumer stops
            for _, task in slots:
                if not task.done():
                    task.cancel()


def prepare_batch_units(audio_text: str, max_chunk_length: Optional[int] = None) -> List[str]:
    """Sentence units for batch synthesis, with oversized sentences split."""
    limit = max_chunk_length or get_settings().TTS_MAX_CHUNK_LENGTH
    units: List[str] = []
    for sentence in split_into_sentences(audio_text):
        units.extend(split_long_sentence(sentence, limit))
    return units


async def synthesize_in_batches(
    synthesizer: SpeechSynthesizer,
    texts: Sequence[str],
    agent_name: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> AsyncIterator[AudioChunk]:
    """
    Synthesize units in concurrent batches, keeping their order.

    Args:
        synthesizer: Speech synthesizer
        texts: Units in reading order
        agent_name: Speaking agent, selects the voice
        batch_size: Units synthesized concurrently per batch

    Yields:
        AudioChunk per unit, indexed from 0
    """
    size = batch_size or get_settings().TTS_BATCH_SIZE
    for start in range(0, len(texts), size):
        batch = texts[start:start + size]
        results = await asyncio.gather(
            *[_synthesize_unit(synthesizer, text, agent_name) for text in batch]
        )
        for offset, (text, audio) in enumerate(zip(batch, results)):
            yield AudioChunk(index=start + offset, text=text, audio=audio)
