"""
Test sentence chunking, ordered progressive synthesis and the speech client.
"""

import asyncio
import base64
import json

import httpx
import pytest

from teachstream.core.errors import SpeechSynthesisError
from teachstream.speech.chunking import split_into_sentences, split_long_sentence
from teachstream.speech.pipeline import (
    ProgressiveSynthesisPipeline,
    prepare_batch_units,
    synthesize_in_batches,
)
from teachstream.speech.synthesizer import OpenAISpeechSynthesizer

from conftest import FakeSynthesizer

SENTENCES = [
    "Let's count the rows of apples together.",
    "There are three rows in the basket.",
    "Each row has exactly four shiny apples.",
    "So three times four gives us twelve apples.",
    "Can you count them with me one more time?",
]


class TestChunking:
    """Text is cut into units the speech endpoint accepts."""

    def test_short_fragments_merge_forward(self):
        chunks = split_into_sentences("Hi. This is a longer sentence here. And another one follows now.")

        assert chunks == [
            "Hi. This is a longer sentence here.",
            "And another one follows now.",
        ]

    def test_short_tail_joins_last_chunk(self):
        chunks = split_into_sentences("This first sentence is long enough. Ok!")
        assert chunks == ["This first sentence is long enough. Ok!"]

    def test_unpunctuated_tail_is_kept(self):
        chunks = split_into_sentences("This first sentence is long enough. and then it trails off")
        assert chunks[-1] == "and then it trails off"

    def test_empty_text(self):
        assert split_into_sentences("   ") == []

    def test_long_sentence_prefers_late_comma(self):
        sentence = "a" * 400 + ", " + "b" * 200

        chunks = split_long_sentence(sentence, 500)

        assert chunks == ["a" * 400 + ",", "b" * 200]

    def test_long_sentence_falls_back_to_spaces(self):
        sentence = ("word " * 200).strip()

        chunks = split_long_sentence(sentence, 500)

        assert all(len(chunk) <= 500 for chunk in chunks)
        assert " ".join(chunks) == sentence

    def test_long_word_is_hard_cut(self):
        chunks = split_long_sentence("x" * 1200, 500)
        assert [len(chunk) for chunk in chunks] == [500, 500, 200]


@pytest.mark.asyncio
class TestProgressivePipeline:
    """Audio is yielded in emission order whatever the synthesis latency."""

    async def test_order_survives_random_latency(self):
        synthesizer = FakeSynthesizer(max_delay=0.05, seed=3)
        pipeline = ProgressiveSynthesisPipeline(synthesizer, max_concurrency=6)
        pipeline.bind_agent("math_specialist")

        for sentence in SENTENCES * 2:
            pipeline.submit(sentence)
        chunks = [chunk async for chunk in pipeline.flush()]

        assert [chunk.index for chunk in chunks] == list(range(10))
        assert [chunk.text for chunk in chunks] == SENTENCES * 2
        assert all(chunk.audio == f"audio:{chunk.text}" for chunk in chunks)
        assert {call["agent_name"] for call in synthesizer.calls} == {"math_specialist"}

    async def test_failed_unit_keeps_its_slot(self):
        synthesizer = FakeSynthesizer(fail_on=[SENTENCES[2]])
        pipeline = ProgressiveSynthesisPipeline(synthesizer)

        for sentence in SENTENCES:
            pipeline.submit(sentence)
        chunks = [chunk async for chunk in pipeline.flush()]

        assert len(chunks) == 5
        assert chunks[2].audio is None
        assert chunks[2].text == SENTENCES[2]
        assert all(chunk.audio for i, chunk in enumerate(chunks) if i != 2)

    async def test_oversized_sentence_takes_several_slots(self):
        pipeline = ProgressiveSynthesisPipeline(FakeSynthesizer(max_delay=0), max_chunk_length=50)

        pipeline.submit("one two three four five six seven eight nine ten eleven twelve thirteen.")

        assert pipeline.slot_count == 2
        chunks = [chunk async for chunk in pipeline.flush()]
        assert [chunk.index for chunk in chunks] == [0, 1]

    async def test_discard_cancels_outstanding_work(self):
        pipeline = ProgressiveSynthesisPipeline(FakeSynthesizer(max_delay=1.0))
        for sentence in SENTENCES:
            pipeline.submit(sentence)
        tasks = [task for _, task in pipeline._slots]

        pipeline.discard()
        await asyncio.gather(*tasks, return_exceptions=True)

        assert not pipeline.has_slots
        assert all(task.cancelled() for task in tasks)
        assert [chunk async for chunk in pipeline.flush()] == []


@pytest.mark.asyncio
class TestBatchSynthesis:
    """Batch mode covers the full audio text of a handed-off response."""

    async def test_batches_keep_order_and_indexes(self):
        units = prepare_batch_units(" ".join(SENTENCES))
        synthesizer = FakeSynthesizer(max_delay=0.03)

        chunks = [chunk async for chunk in synthesize_in_batches(synthesizer, units, "motivator", batch_size=2)]

        assert [chunk.index for chunk in chunks] == list(range(len(units)))
        assert [chunk.text for chunk in chunks] == units
        assert {call["agent_name"] for call in synthesizer.calls} == {"motivator"}

    async def test_failure_in_batch_yields_none(self):
        synthesizer = FakeSynthesizer(fail_on=[SENTENCES[1]])

        chunks = [chunk async for chunk in synthesize_in_batches(synthesizer, SENTENCES, batch_size=3)]

        assert [chunk.audio is None for chunk in chunks] == [False, True, False, False, False]


@pytest.mark.asyncio
class TestOpenAISpeechSynthesizer:
    """The HTTP client speaks the OpenAI /audio/speech protocol."""

    async def test_posts_agent_voice_and_returns_base64(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3-audio-bytes")

        synthesizer = OpenAISpeechSynthesizer(
            base_url="http://tts.test/v1",
            api_key="secret",
            model="tts-1",
            transport=httpx.MockTransport(handler),
        )

        audio = await synthesizer.synthesize("Three times four is twelve.", "math_specialist")
        await synthesizer.aclose()

        assert base64.b64decode(audio) == b"ID3-audio-bytes"
        assert seen["path"] == "/v1/audio/speech"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["voice"] == "echo"
        assert seen["body"]["model"] == "tts-1"
        assert seen["body"]["input"] == "Three times four is twelve."

    async def test_unknown_agent_uses_default_voice(self):
        synthesizer = OpenAISpeechSynthesizer(base_url="http://tts.test/v1", default_voice="alloy")
        assert synthesizer.voice_for("narrator") == "alloy"
        assert synthesizer.voice_for(None) == "alloy"

    async def test_upstream_error_raises(self):
        synthesizer = OpenAISpeechSynthesizer(
            base_url="http://tts.test/v1",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="overloaded")),
        )

        with pytest.raises(SpeechSynthesisError):
            await synthesizer.synthesize("Hello there.", "coordinator")
        await synthesizer.aclose()

    async def test_empty_text_is_rejected(self):
        synthesizer = OpenAISpeechSynthesizer(base_url="http://tts.test/v1")
        with pytest.raises(SpeechSynthesisError):
            await synthesizer.synthesize("   ")
