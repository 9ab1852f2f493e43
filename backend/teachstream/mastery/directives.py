"""Adaptive teaching directives.

Turns the student profile, the last few exchanges and the current mastery
score into instructions that are prepended to every specialist prompt. The
mastery status block always comes first so the tier instruction wins over
anything below it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from .tracker import LEARNING, MASTERING, STRUGGLING, mastery_tier

STRUGGLE_INDICATORS = (
    "not quite",
    "incorrect",
    "try again",
    "let me explain again",
    "let's break this down",
    "having trouble",
    "struggling",
)

TIER_INSTRUCTIONS = {
    STRUGGLING: "Simplify. Smallest steps, everyday examples, check understanding after every step.",
    LEARNING: "Standard pace. Clear explanations with 1-2 examples, build on what they know.",
    MASTERING: "Challenge. Deeper questions, extensions and applications, move quickly through basics.",
}

LEARNING_STYLE_ADJUSTMENTS: Dict[str, List[str]] = {
    "visual": [
        "VISUAL LEARNER:",
        "- Include an SVG diagram for every major concept",
        "- Use spatial language and visual metaphors (shapes, colours, positions)",
        "- Organize information as lists, tables or visual hierarchies",
    ],
    "auditory": [
        "AUDITORY LEARNER:",
        "- Conversational, rhythmic language with clear verbal signposts",
        "- Repeat key ideas in different words",
        "- Use sound-based cues like \"listen to this\" or \"hear how\"",
    ],
    "kinesthetic": [
        "KINESTHETIC LEARNER:",
        "- Suggest hands-on activities and physical demonstrations",
        "- Use movement metaphors (building, moving, touching)",
        "- Encourage \"draw it out\" or \"use your fingers\"",
    ],
    "reading/writing": [
        "READING/WRITING LEARNER:",
        "- Detailed written explanations with well-organized text",
        "- Define vocabulary and give written examples",
        "- Suggest short written summaries",
    ],
    "logical": [
        "LOGICAL LEARNER:",
        "- Numbered steps and clear cause-effect chains",
        "- Emphasize patterns, rules and \"if...then\" reasoning",
    ],
    "social": [
        "SOCIAL LEARNER:",
        "- Frame concepts through people, dialogue and group scenarios",
        "- Encourage \"explain it to a friend\"",
    ],
    "solitary": [
        "SOLITARY LEARNER:",
        "- Support self-paced reflection and personal connections",
        "- Ask \"what do you think?\" and \"in your own words\"",
    ],
}

STYLE_ALIASES = {
    "reading-writing": "reading/writing",
    "reading_writing": "reading/writing",
    "mathematical": "logical",
    "interpersonal": "social",
    "intrapersonal": "solitary",
}

DIFFICULTY_ADJUSTMENTS = {
    STRUGGLING: [
        "LOW MASTERY - SIMPLIFY:",
        "- Break every concept into the smallest steps and use grade-level vocabulary",
        "- Give at least 3 concrete examples per concept",
        "- Do not compress any teaching phase; give 2 worked examples before guided practice",
    ],
    LEARNING: [
        "MEDIUM MASTERY - STANDARD:",
        "- Balanced pace with 1-2 examples per concept",
        "- Check understanding periodically, not after every step",
    ],
    MASTERING: [
        "HIGH MASTERY - ACCELERATE:",
        "- Introduce richer vocabulary and questions that need synthesis",
        "- Offer extensions: \"What if...\", \"How would you apply this to...\"",
        "- Phases 1-3 may be compressed; phases 4 and 5 may not",
    ],
}

SCAFFOLDING = {
    "high": [
        "HIGH STRUGGLE - MAXIMUM SCAFFOLDING:",
        "- Show complete worked examples and guide every step explicitly",
        "- Start independent practice with an easier problem than expected",
        "- On a second failure drop back one phase; celebrate small wins",
        "- If stuck for 5+ turns, suggest a break (hand off to motivator)",
    ],
    "standard": [
        "MODERATE STRUGGLE - STANDARD SCAFFOLDING:",
        "- Give hints, not full solutions; ask guiding questions",
        "- Check in regularly without over-helping",
    ],
    "minimal": [
        "LOW STRUGGLE - MINIMAL SCAFFOLDING:",
        "- Let the student work independently; intervene only when asked",
        "- Pose open-ended questions that encourage exploration",
    ],
}


@dataclass
class AdaptiveDirectives:
    """Instructions for one turn, grouped by concern."""
    current_mastery: int
    mastery_status: List[str] = field(default_factory=list)
    style_adjustments: List[str] = field(default_factory=list)
    difficulty_adjustments: List[str] = field(default_factory=list)
    scaffolding_needs: List[str] = field(default_factory=list)
    phase_guidance: List[str] = field(default_factory=list)
    encouragement_level: str = "standard"
    struggle_ratio: float = 0.0

    @property
    def tier(self) -> str:
        return mastery_tier(self.current_mastery)

    @property
    def directive_count(self) -> int:
        return len(self.style_adjustments) + len(self.difficulty_adjustments) + len(self.scaffolding_needs)


def struggle_ratio(recent_history: Sequence[Mapping[str, Any]]) -> float:
    """Share of recent tutor responses that show the student struggling."""
    if not recent_history:
        return 0.0
    struggling = sum(
        1
        for turn in recent_history
        if any(indicator in (turn.get("ai_response") or "").lower() for indicator in STRUGGLE_INDICATORS)
    )
    return struggling / len(recent_history)


def build_adaptive_directives(
    profile: Mapping[str, Any],
    recent_history: Sequence[Mapping[str, Any]],
    current_mastery: int,
) -> AdaptiveDirectives:
    """
    Build adaptive directives for a turn.

    Args:
        profile: Student profile (learning_style, strengths, struggles)
        recent_history: Recent exchanges with 'ai_response'
        current_mastery: Mastery score 0-100

    Returns:
        AdaptiveDirectives
    """
    tier = mastery_tier(current_mastery)
    directives = AdaptiveDirectives(current_mastery=current_mastery)

    directives.mastery_status = [
        f"MASTERY STATUS: {tier.upper()} ({current_mastery}%)",
        f"- {TIER_INSTRUCTIONS[tier]}",
    ]

    style = (profile.get("learning_style") or "").strip().lower()
    style = STYLE_ALIASES.get(style, style)
    directives.style_adjustments.extend(LEARNING_STYLE_ADJUSTMENTS.get(style, []))

    directives.difficulty_adjustments.extend(DIFFICULTY_ADJUSTMENTS[tier])

    ratio = struggle_ratio(recent_history)
    directives.struggle_ratio = ratio
    if ratio > 0.4:
        directives.encouragement_level = "high"
    elif ratio > 0.2:
        directives.encouragement_level = "standard"
    else:
        directives.encouragement_level = "minimal"
    directives.scaffolding_needs.extend(SCAFFOLDING[directives.encouragement_level])

    strengths = profile.get("strengths") or []
    if strengths:
        directives.scaffolding_needs.extend([
            f"STRENGTHS: {', '.join(strengths)}.",
            f"- Bridge new ideas from these (\"You're good at {strengths[0]}, this is similar...\")",
        ])

    struggles = profile.get("struggles") or []
    if struggles:
        directives.scaffolding_needs.extend([
            f"KNOWN STRUGGLES: {', '.join(struggles)}.",
            "- Review basics first and expect confusion in these areas",
        ])

    if current_mastery >= 80 and ratio < 0.2:
        directives.phase_guidance.extend([
            "PHASE ACCELERATION:",
            "- Compress phases 1-3 and spend the time on transfer questions in phase 5",
        ])
    elif current_mastery < 30:
        directives.phase_guidance.extend([
            "EXTENDED PHASES:",
            "- Use 3+ worked examples and 2-3 guided problems before independent practice",
            "- Watch for frustration and hand off to the motivator if needed",
        ])
    elif ratio > 0.4 and current_mastery >= 50:
        directives.phase_guidance.extend([
            "CORRECTION-HEAVY MODE:",
            "- Verify each step in guided practice; after each error return to guided practice briefly",
        ])

    return directives


def format_directives(directives: AdaptiveDirectives) -> str:
    """Render directives as a compact prompt block, mastery status first."""
    sections: List[str] = ["ADAPTIVE TEACHING DIRECTIVES", *directives.mastery_status]

    for group in (
        directives.style_adjustments,
        directives.difficulty_adjustments,
        directives.scaffolding_needs,
        directives.phase_guidance,
    ):
        if group:
            sections.append("")
            sections.extend(group)

    sections.append("")
    sections.append(f"ENCOURAGEMENT: {directives.encouragement_level.upper()}")
    if directives.encouragement_level == "high":
        sections.append("- Be very encouraging and celebrate every small success")
    elif directives.encouragement_level == "minimal":
        sections.append("- Supportive but not overbearing; the student is doing well")

    return "\n".join(sections)
