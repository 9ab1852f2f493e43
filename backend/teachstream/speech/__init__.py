"""Speech synthesis: sentence chunking, the synthesizer client and the progressive pipeline."""

from .chunking import split_into_sentences, split_long_sentence
from .pipeline import (
    AudioChunk,
    ProgressiveSynthesisPipeline,
    prepare_batch_units,
    synthesize_in_batches,
)
from .synthesizer import (
    OpenAISpeechSynthesizer,
    SpeechSynthesizer,
    close_speech_synthesizer,
    get_speech_synthesizer,
)

__all__ = [
    "AudioChunk",
    "ProgressiveSynthesisPipeline",
    "prepare_batch_units",
    "synthesize_in_batches",
    "split_into_sentences",
    "split_long_sentence",
    "OpenAISpeechSynthesizer",
    "SpeechSynthesizer",
    "close_speech_synthesizer",
    "get_speech_synthesizer",
]
