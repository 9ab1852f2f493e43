"""Mastery tracking, evidence recording and adaptive directives."""

from .cache import GenerationCache, mastery_cache
from .directives import AdaptiveDirectives, build_adaptive_directives, format_directives
from .evidence import EVIDENCE_TYPES, record_mastery_evidence
from .tracker import (
    MasteryRules,
    compute_mastery_score,
    determine_mastery,
    get_current_mastery_level,
    mastery_tier,
)

__all__ = [
    "GenerationCache",
    "mastery_cache",
    "AdaptiveDirectives",
    "build_adaptive_directives",
    "format_directives",
    "EVIDENCE_TYPES",
    "record_mastery_evidence",
    "MasteryRules",
    "compute_mastery_score",
    "determine_mastery",
    "get_current_mastery_level",
    "mastery_tier",
]
