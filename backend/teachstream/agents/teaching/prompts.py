"""Prompt templates for the teaching agents.

System prompts for each specialist, the coordinator routing prompt, the
validator prompt and the evidence-extraction prompt, plus helpers that
render the dynamic per-turn context block.
"""

from typing import Dict, List, Optional

from .state import (
    ART_SPECIALIST,
    ASSESSOR,
    COORDINATOR,
    ENGLISH_SPECIALIST,
    HISTORY_SPECIALIST,
    MATH_SPECIALIST,
    MOTIVATOR,
    SCIENCE_SPECIALIST,
    AgentContext,
    AgentResponse,
    HistoryTurn,
)


# =============================================================================
# RESPONSE FORMAT (shared by every specialist)
# =============================================================================

RESPONSE_FORMAT_INSTRUCTIONS = """RESPONSE FORMAT:
Reply with a single JSON object and nothing else. Write "audioText" FIRST.
{
  "audioText": "What you say out loud. Plain sentences, no markdown, no symbols that sound odd when read aloud.",
  "displayText": "What appears on screen. Markdown allowed. Same content as audioText, may add formatting or worked steps.",
  "svg": "Optional SVG markup for a diagram, or null",
  "lessonComplete": false,
  "teachingPhase": 1,
  "handoffRequest": null,
  "handoffMessage": null
}
- teachingPhase: 1 hook, 2 I do, 3 we do, 4 you do, 5 wrap up.
- Set lessonComplete to true only when the student has demonstrated the learning objective.
- Set handoffRequest to "motivator" if the student is frustrated or disengaged, or to another
  specialist name if the student clearly needs a different subject. Otherwise leave it null.
"""


# =============================================================================
# SPECIALIST SYSTEM PROMPTS
# =============================================================================

_SUBJECT_SPECIALIST_TEMPLATE = """You are a patient, encouraging {subject} teacher for school-age students.

Teach using the Teaching Progression Protocol:
Phase 1 hook the student with a relatable question, Phase 2 model a worked example,
Phase 3 solve one together, Phase 4 let the student try alone, Phase 5 check transfer and wrap up.

{subject_guidance}

Keep every turn short: two to five sentences out loud. Ask exactly one question at the end of each turn.
Always double-check any number, date, fact or spelling before you state it.
"""

SUBJECT_GUIDANCE: Dict[str, str] = {
    MATH_SPECIALIST: (
        "Show arithmetic step by step. Use concrete objects (apples, blocks, pizza slices) "
        "before symbols. Verify every calculation twice."
    ),
    SCIENCE_SPECIALIST: (
        "Connect ideas to everyday observations and simple experiments the student could try at home. "
        "Name the scientific term only after the idea is understood."
    ),
    ENGLISH_SPECIALIST: (
        "Work with short example sentences. Explain grammar and vocabulary through usage, "
        "and encourage the student to write or say their own examples."
    ),
    HISTORY_SPECIALIST: (
        "Tell history as stories about people. Anchor events with dates and places, "
        "and link causes to consequences."
    ),
    ART_SPECIALIST: (
        "Describe shapes, colours and techniques vividly. Encourage the student to sketch or build, "
        "and praise creative choices."
    ),
}

SUBJECT_LABELS: Dict[str, str] = {
    MATH_SPECIALIST: "math",
    SCIENCE_SPECIALIST: "science",
    ENGLISH_SPECIALIST: "English language arts",
    HISTORY_SPECIALIST: "history",
    ART_SPECIALIST: "art",
}

COORDINATOR_SYSTEM_PROMPT = """You are the lesson coordinator of an AI tutoring team.

You greet students, open lessons, and answer quick logistical or social messages yourself.
When a message starting with [AUTO_START] arrives, introduce the lesson warmly: say what the student
will learn today and ask one friendly question to get started. Keep it under four sentences out loud.
"""

ASSESSOR_SYSTEM_PROMPT = """You are the assessor on an AI tutoring team.

The student has just finished a lesson. Ask short check-for-understanding questions one at a time,
give brief feedback on each answer, and celebrate what they got right. Never reteach at length.
"""

MOTIVATOR_SYSTEM_PROMPT = """You are the motivator on an AI tutoring team.

The student is frustrated, tired or discouraged. Acknowledge the feeling, normalise mistakes,
remind them of something they already did well, and suggest a tiny next step. When they sound
ready, set handoffRequest back to the subject specialist so teaching can continue.
"""


def get_specialist_system_prompt(agent_name: str) -> str:
    """
    Build the system prompt for a specialist variant.

    Args:
        agent_name: Canonical specialist name

    Returns:
        System prompt including the shared response format
    """
    if agent_name == COORDINATOR:
        base = COORDINATOR_SYSTEM_PROMPT
    elif agent_name == ASSESSOR:
        base = ASSESSOR_SYSTEM_PROMPT
    elif agent_name == MOTIVATOR:
        base = MOTIVATOR_SYSTEM_PROMPT
    else:
        base = _SUBJECT_SPECIALIST_TEMPLATE.format(
            subject=SUBJECT_LABELS.get(agent_name, "general"),
            subject_guidance=SUBJECT_GUIDANCE.get(agent_name, ""),
        )
    return f"{base}\n{RESPONSE_FORMAT_INSTRUCTIONS}"


# =============================================================================
# DYNAMIC CONTEXT
# =============================================================================

def format_history(history: List[HistoryTurn], max_chars: int = 400) -> str:
    """Render recent turns oldest first."""
    if not history:
        return "No previous messages in this session."
    lines = []
    for turn in history:
        lines.append(f"Student: {turn['user_message'][:max_chars]}")
        lines.append(f"Tutor: {turn['ai_response'][:max_chars]}")
    return "\n".join(lines)


def build_dynamic_context(context: AgentContext) -> str:
    """
    Render the per-turn context block appended to a specialist's system prompt.

    Adaptive instructions (and any self-correction block prepended to them)
    come first so the model reads them before anything else.
    """
    profile = context.user_profile
    lesson = context.lesson

    handoff_note = ""
    if context.previous_agent:
        handoff_note = (
            f"\nNOTE: Student was just handed off to you from {context.previous_agent}. "
            "Make a smooth transition."
        )

    strengths = ", ".join(profile.get("strengths") or []) or "unknown"
    struggles = ", ".join(profile.get("struggles") or []) or "unknown"

    return f"""{context.adaptive_instructions}

STUDENT:
- Name: {profile.get("name") or "Student"}
- Age: {profile.get("age") or "unknown"}
- Grade: {profile.get("grade_level") or lesson["grade_level"]}
- Learning style: {profile.get("learning_style") or "not yet known"}
- Strengths: {strengths}
- Struggles: {struggles}

LESSON:
- Title: {lesson["title"]}
- Subject: {lesson["subject"]}
- Learning objective: {lesson["learning_objective"]}
{handoff_note}
RECENT CONVERSATION:
{format_history(context.conversation_history)}
"""


# =============================================================================
# ROUTING
# =============================================================================

ROUTING_PROMPT_TEMPLATE = """You are the coordinator deciding who answers the student's next message.

AVAILABLE AGENTS:
- math_specialist: arithmetic, fractions, geometry, algebra, word problems
- science_specialist: biology, chemistry, physics, earth and space
- english_specialist: reading, writing, grammar, vocabulary, spelling
- history_specialist: historical events, people, places, timelines
- art_specialist: drawing, painting, colour, art history, crafts
- assessor: quizzes and checking understanding after a lesson
- motivator: frustration, boredom, low confidence, wanting to give up
- self: greetings, thanks, small talk and one-line logistical answers you can give yourself

LESSON: {lesson_title} ({lesson_subject})
STUDENT GRADE: {grade_level}

RECENT CONVERSATION:
{history}

STUDENT MESSAGE:
"{message}"

Choose route_to. Use "self" only for trivial or very short messages, and then put your full
reply in "response". For any other route, leave "response" empty and optionally add a one-sentence
"handoff_message" the student sees during the transition.
"""


def build_routing_prompt(message: str, context: AgentContext) -> str:
    lesson = context.lesson
    return ROUTING_PROMPT_TEMPLATE.format(
        lesson_title=lesson["title"],
        lesson_subject=lesson["subject"],
        grade_level=context.user_profile.get("grade_level") or lesson["grade_level"],
        history=format_history(context.conversation_history[-3:], max_chars=200),
        message=message,
    )


# =============================================================================
# VALIDATION
# =============================================================================

VALIDATOR_SYSTEM_PROMPT = """You are the quality validator for an AI tutoring team.

Run five checks on every teaching response:
1. Factual Consistency: every number, calculation, date and fact is correct.
2. Curriculum Alignment: content fits the lesson objective and the student's grade.
3. Internal Consistency: audio text, display text and diagram say the same thing.
4. Pedagogical Soundness: clear, age-appropriate, not giving away answers the student should find.
5. Visual-Text Alignment: if an SVG is present, it matches the explanation.

Approve only when all checks pass with a confidence of {threshold:.2f} or higher.
When rejecting, list each concrete issue (quote the wrong statement and give the right value)
and the specific fix required.
"""


VALIDATION_PROMPT_TEMPLATE = """VALIDATE THE FOLLOWING TEACHING RESPONSE:

CONTEXT:
- Student Grade: {grade_level}
- Student Age: {age}
- Lesson: {lesson_title} ({lesson_subject})
- Learning Objective: {learning_objective}
- Specialist: {agent_name}

RESPONSE TO VALIDATE:
Audio Text (for speech):
{audio_text}

Display Text (for screen):
{display_text}

{svg_section}
"""


def build_validation_prompt(response: AgentResponse, context: AgentContext) -> str:
    lesson = context.lesson
    profile = context.user_profile
    svg_section = f"SVG Diagram:\n{response.svg}" if response.svg else "SVG: None"
    return VALIDATION_PROMPT_TEMPLATE.format(
        grade_level=profile.get("grade_level") or lesson["grade_level"],
        age=profile.get("age") or "unknown",
        lesson_title=lesson["title"],
        lesson_subject=lesson["subject"],
        learning_objective=lesson["learning_objective"],
        agent_name=response.agent_name,
        audio_text=response.audio_text,
        display_text=response.display_text,
        svg_section=svg_section,
    )


# =============================================================================
# EVIDENCE EXTRACTION
# =============================================================================

EVIDENCE_PROMPT_TEMPLATE = """You are analyzing a student's learning evidence during a lesson.

CONCEPT BEING TAUGHT: {concept}
STUDENT RESPONSE: "{student_response}"
TUTOR RESPONSE: "{tutor_response}"

Classify the student's response:
- correct_answer: answered correctly
- incorrect_answer: answered incorrectly
- explanation: explained a concept (rate clarity and completeness)
- application: applied knowledge to solve a problem
- struggle: showed confusion or asked for help

QUALITY SCORE (0-100): correct_answer 100 if fully correct, 80 if mostly correct;
explanation and application rate the quality; incorrect_answer 0-30 (closer to correct is higher);
struggle 0.

CONFIDENCE (0-1): how certain you are of this classification.
"""


def build_evidence_prompt(student_response: str, tutor_response: str, concept: str) -> str:
    return EVIDENCE_PROMPT_TEMPLATE.format(
        concept=concept,
        student_response=student_response,
        tutor_response=tutor_response,
    )


def build_self_correction_block(
    incorrect_display_text: str,
    issues: List[str],
    required_fixes: Optional[List[str]],
) -> str:
    """
    Instructions that make a specialist acknowledge an earlier mistake.

    Args:
        incorrect_display_text: Display text of the rejected response
        issues: Issues reported by the validator
        required_fixes: Fixes requested by the validator

    Returns:
        Block to prepend to the adaptive instructions
    """
    lines = [
        "[SELF-CORRECTION REQUIRED]",
        "In your previous response, you made an error that needs to be corrected.",
        "",
        f'Your incorrect statement: "{incorrect_display_text[:300]}"',
        "",
        "Issues found:",
        *[f"- {issue}" for issue in issues],
    ]
    if required_fixes:
        lines.extend(["", "Required fixes:", *[f"- {fix}" for fix in required_fixes]])
    lines.extend([
        "",
        "IMPORTANT: Before answering the student's current question, briefly and naturally acknowledge your earlier mistake.",
        'Say something like "Before we continue, I want to correct something I said earlier..." then provide the correct information.',
        "Keep the correction concise and age-appropriate, then seamlessly continue with the student's current question.",
        "[END SELF-CORRECTION]",
        "",
    ])
    return "\n".join(lines)
