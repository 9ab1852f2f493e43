"""Parsing helpers for specialist output.

- Progressive extraction of completed sentences from the "audioText" field
  of a JSON object that is still being generated
- Tolerant JSON decoding (code fences, raw control characters)
- SVG extraction from display text
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .state import AgentResponse, SpecialistOutput

logger = logging.getLogger(__name__)

AUDIO_TEXT_FIELD = re.compile(r'"audioText"\s*:\s*"((?:[^"\\]|\\.)*)(")?', re.DOTALL)
SENTENCE = re.compile(r"[^.!?]+[.!?]+")
CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
SVG_MARKER_BLOCK = re.compile(r"\[SVG\](.*?)\[/SVG\]", re.DOTALL | re.IGNORECASE)
SVG_TAG_BLOCK = re.compile(r"<svg\b.*?</svg>", re.DOTALL | re.IGNORECASE)


# =============================================================================
# Progressive sentence extraction
# =============================================================================

def _decode_partial_json_string(raw: str) -> str:
    """Decode the body of a JSON string that may end mid-escape."""
    for cut in range(0, min(6, len(raw)) + 1):
        candidate = raw[:len(raw) - cut] if cut else raw
        try:
            return json.loads(f'"{candidate}"')
        except json.JSONDecodeError:
            continue
    return raw.replace('\\"', '"').replace("\\n", " ")


class SentenceExtractor:
    """
    Pull completed sentences out of a growing JSON buffer.

    Each call to `feed` receives the whole buffer so far and returns only the
    sentences that became complete since the previous call. Once the closing
    quote of "audioText" has been seen, any trailing text without final
    punctuation is emitted as the last sentence.
    """

    def __init__(self):
        self.extracted_length = 0
        self.field_complete = False
        self.sentence_count = 0

    def feed(self, buffer: str) -> List[str]:
        if self.field_complete:
            return []

        match = AUDIO_TEXT_FIELD.search(buffer)
        if not match:
            return []

        text = _decode_partial_json_string(match.group(1))
        complete = match.group(2) is not None
        pending = text[self.extracted_length:]

        sentences: List[str] = []
        consumed = 0
        for sentence_match in SENTENCE.finditer(pending):
            sentence = sentence_match.group(0).strip()
            consumed = sentence_match.end()
            if sentence:
                sentences.append(sentence)

        if complete:
            remainder = pending[consumed:].strip()
            if remainder:
                sentences.append(remainder)
            consumed = len(pending)
            self.field_complete = True

        self.extracted_length += consumed
        self.sentence_count += len(sentences)
        return sentences

    def finish(self, audio_text: str) -> List[str]:
        """Emit whatever the stream left behind once the full text is known."""
        if self.field_complete:
            return []
        self.field_complete = True
        remainder = audio_text[self.extracted_length:].strip()
        if not remainder:
            return []
        sentences = [s.strip() for s in SENTENCE.findall(remainder) if s.strip()]
        tail = SENTENCE.sub("", remainder).strip()
        if tail:
            sentences.append(tail)
        self.sentence_count += len(sentences)
        return sentences


# =============================================================================
# JSON decoding
# =============================================================================

def sanitize_json_text(text: str) -> str:
    """
    Escape raw control characters that appear inside JSON string literals.

    Models sometimes emit literal newlines or tabs inside strings, which the
    strict decoder rejects.
    """
    out: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char == "\n":
                out.append("\\n")
                continue
            elif char == "\r":
                out.append("\\r")
                continue
            elif char == "\t":
                out.append("\\t")
                continue
            elif ord(char) < 0x20:
                continue
        elif char == '"':
            in_string = True
        out.append(char)
    return "".join(out)


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Decode a JSON object from model output.

    Raises:
        ValueError: If no JSON object can be recovered
    """
    cleaned = CODE_FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("Model output contains no JSON object")
        try:
            data = json.loads(sanitize_json_text(cleaned[start:end + 1]))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in model output: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Model output JSON is not an object")
    return data


# =============================================================================
# SVG extraction
# =============================================================================

def extract_svg(display_text: str) -> tuple[str, Optional[str]]:
    """
    Move an inline diagram out of the display text.

    Supports both `[SVG]...[/SVG]` markers and bare `<svg>...</svg>` tags.

    Returns:
        (display text without the diagram, svg markup or None)
    """
    marker = SVG_MARKER_BLOCK.search(display_text)
    if marker:
        svg = marker.group(1).strip()
        return SVG_MARKER_BLOCK.sub("", display_text, count=1).strip(), svg or None

    tag = SVG_TAG_BLOCK.search(display_text)
    if tag:
        return SVG_TAG_BLOCK.sub("", display_text, count=1).strip(), tag.group(0).strip()

    return display_text, None


# =============================================================================
# Response construction
# =============================================================================

def build_agent_response(agent_name: str, output: SpecialistOutput) -> AgentResponse:
    """
    Normalize a specialist's structured output into an AgentResponse.

    audio_text falls back to the display text (without any diagram) so a
    response is always speakable unless it is a bare completion signal.
    """
    display_text = output.display_text.strip()
    svg = output.svg.strip() if output.svg else None
    if not svg and display_text:
        display_text, svg = extract_svg(display_text)

    audio_text = output.audio_text.strip() or display_text
    if not display_text:
        display_text = audio_text

    return AgentResponse(
        agent_name=agent_name,
        display_text=display_text,
        audio_text=audio_text,
        svg=svg,
        lesson_complete=output.lesson_complete,
        teaching_phase=output.teaching_phase,
        handoff_request=output.handoff_request or None,
        handoff_message=output.handoff_message or None,
    )


def decode_specialist_output(text: str) -> SpecialistOutput:
    """
    Decode raw model text into the specialist JSON contract.

    Raises:
        ValueError: If the text cannot be decoded
    """
    data = parse_json_object(text)
    try:
        return SpecialistOutput.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Model output does not match the response format: {e}") from e


def parse_specialist_output(agent_name: str, text: str) -> AgentResponse:
    """
    Parse raw model text into an AgentResponse.

    Raises:
        ValueError: If the text cannot be decoded or is empty
    """
    return ensure_speakable(build_agent_response(agent_name, decode_specialist_output(text)))


def ensure_speakable(response: AgentResponse) -> AgentResponse:
    """
    Reject responses with nothing to say.

    Raises:
        ValueError: If the response is empty and not a completion signal
    """
    if not response.audio_text and not response.lesson_complete:
        raise ValueError(f"{response.agent_name} returned an empty response")
    return response
