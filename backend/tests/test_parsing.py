"""
Test specialist output parsing: progressive sentences, JSON repair, SVG extraction.
"""

import json

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage

from teachstream.agents.teaching.parsing import (
    SentenceExtractor,
    extract_svg,
    parse_json_object,
    parse_specialist_output,
    sanitize_json_text,
)
from teachstream.agents.teaching.specialists import Specialist

from conftest import make_context


class TestSentenceExtractor:
    """Sentences come out of a growing JSON buffer exactly once."""

    def test_emits_only_completed_sentences(self):
        extractor = SentenceExtractor()

        assert extractor.feed('{"audioText": "Hello there') == []
        assert extractor.feed('{"audioText": "Hello there. How are') == ["Hello there."]
        assert extractor.feed('{"audioText": "Hello there. How are you? Fine') == ["How are you?"]

    def test_closing_quote_flushes_unpunctuated_tail(self):
        extractor = SentenceExtractor()
        extractor.feed('{"audioText": "First one. Second')

        sentences = extractor.feed('{"audioText": "First one. Second one without a stop", "displayText": "x"}')

        assert sentences == ["Second one without a stop"]
        assert extractor.field_complete
        assert extractor.feed('{"audioText": "First one. Second one without a stop", "more": "."}') == []

    def test_decodes_escapes_in_partial_text(self):
        extractor = SentenceExtractor()

        sentences = extractor.feed('{"audioText": "She said \\"yes\\". Then')

        assert sentences == ['She said "yes".']

    def test_finish_recovers_text_the_stream_missed(self):
        extractor = SentenceExtractor()
        extractor.feed('{"audioText": "One. Two')

        assert extractor.finish("One. Two. Three") == ["Two.", "Three"]
        assert extractor.sentence_count == 3

    def test_nothing_before_audio_field(self):
        extractor = SentenceExtractor()
        assert extractor.feed('{"displayText": "Hello. World."') == []


class TestJsonRepair:
    """Model JSON is decoded even with fences or raw control characters."""

    def test_sanitize_escapes_raw_newlines_inside_strings(self):
        raw = '{"audioText": "line one\nline two",\n"displayText": "tab\there"}'

        cleaned = sanitize_json_text(raw)

        assert json.loads(cleaned) == {"audioText": "line one\nline two", "displayText": "tab\there"}

    def test_code_fence_is_stripped(self):
        data = parse_json_object('```json\n{"audioText": "Hi."}\n```')
        assert data == {"audioText": "Hi."}

    def test_surrounding_prose_is_ignored(self):
        data = parse_json_object('Sure! {"audioText": "Hi.", "lessonComplete": false} Hope that helps.')
        assert data["audioText"] == "Hi."

    def test_no_object_raises(self):
        with pytest.raises(ValueError):
            parse_json_object("I cannot answer in JSON today")

    def test_empty_response_is_rejected(self):
        with pytest.raises(ValueError):
            parse_specialist_output("math_specialist", '{"audioText": "", "displayText": ""}')

    def test_completion_signal_is_allowed_empty(self):
        response = parse_specialist_output("assessor", '{"lessonComplete": true}')
        assert response.is_completion_signal


class TestSvgExtraction:
    """Diagrams move out of display text into the svg field."""

    def test_marker_block(self):
        text, svg = extract_svg("Look at this: [SVG]<svg><circle r='4'/></svg>[/SVG] Nice!")

        assert svg == "<svg><circle r='4'/></svg>"
        assert "[SVG]" not in text
        assert text.startswith("Look at this:")

    def test_bare_svg_tag(self):
        text, svg = extract_svg("Groups of three:\n<svg width='10'><rect/></svg>")

        assert svg == "<svg width='10'><rect/></svg>"
        assert text == "Groups of three:"

    def test_no_diagram(self):
        assert extract_svg("Just words.") == ("Just words.", None)

    def test_audio_falls_back_to_display_without_svg(self):
        response = parse_specialist_output(
            "math_specialist",
            json.dumps({"displayText": "Three rows of four. [SVG]<svg/>[/SVG]"}),
        )

        assert response.svg == "<svg/>"
        assert response.audio_text == "Three rows of four."


@pytest.mark.asyncio
class TestSpecialistStreaming:
    """A specialist reports audio sentences while the model streams."""

    async def test_stream_reports_sentences_in_order(self):
        payload = json.dumps({
            "audioText": "Three times four is twelve. You got it! Let's try another one",
            "displayText": "3 x 4 = 12",
            "teachingPhase": 3,
        })
        model = GenericFakeChatModel(messages=iter([AIMessage(content=payload)]))
        specialist = Specialist("math_specialist", system_prompt="Teach math.", streaming_llm=model)
        heard = []

        response = await specialist.stream(
            "what is 3 times 4?",
            make_context(),
            lambda sentence, index: heard.append((index, sentence)),
        )

        assert heard == [
            (0, "Three times four is twelve."),
            (1, "You got it!"),
            (2, "Let's try another one"),
        ]
        assert response.display_text == "3 x 4 = 12"
        assert response.teaching_phase == 3

    async def test_invoke_parses_full_response(self):
        payload = json.dumps({"audioText": "Great question.", "handoffRequest": "motivator"})
        model = GenericFakeChatModel(messages=iter([AIMessage(content=payload)]))
        specialist = Specialist("math_specialist", system_prompt="Teach math.", llm=model)

        response = await specialist.invoke("help", make_context())

        assert response.audio_text == "Great question."
        assert response.display_text == "Great question."
        assert response.handoff_request == "motivator"
