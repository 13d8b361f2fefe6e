"""Prompt builders for diagnostic question generation, grading and contests.

Each builder is a pure function of its inputs so prompts can be asserted on
without touching a provider.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping, Optional

QUESTION_PROMPT_VERSION = "diagnostic_question.v2"
GRADING_PROMPT_VERSION = "diagnostic_grade.v2"
CONTEST_PROMPT_VERSION = "diagnostic_contest.v1"

CURRICULUM_SUMMARY = (
    "Only Plato Cave, Frankfurt truth/lies/bullshit, Gettier JTB, Euthyphro divine command, "
    "Problem of Evil, Ring of Gyges"
)

_MCQ_ANGLES = {
    1: "basic definition",
    2: "example analysis",
    3: "conceptual contrast",
    4: "philosophical implication",
    5: "practical application",
    6: "critical evaluation",
    7: "comparative analysis",
    8: "synthesis",
}

_SHORT_ANGLES = {
    1: "explain concept",
    2: "analyze argument",
    3: "compare positions",
    4: "apply to scenario",
    5: "evaluate claim",
    6: "critique assumption",
    7: "synthesize ideas",
    8: "defend position",
}

SYSTEM_PROMPT = (
    "You are the assessment engine of a Philosophy 101 course. "
    "Reply with a single JSON object and nothing else."
)


@dataclass(frozen=True)
class QuestionParams:
    topic: str
    difficulty: str
    question_type: str
    seed: int
    angle: int
    variation: int


def _angle_legend(angles: Mapping[int, str]) -> str:
    return ", ".join(f"{key}={label}" for key, label in sorted(angles.items()))


def build_question_prompt(params: QuestionParams) -> str:
    if params.question_type == "mcq":
        angles = _MCQ_ANGLES
        schema = {
            "type": "mcq",
            "stem": f"<{params.difficulty} question about {params.topic}>",
            "options": {"A": "<option>", "B": "<option>", "C": "<option>", "D": "<option>"},
            "answer_key": "<one of A, B, C, D>",
            "concept_tags": [params.topic],
            "difficulty": params.difficulty,
            "points": 5,
        }
        heading = "GENERATE FRESH Philosophy 101 multiple-choice question - NO EXAMPLES, NO TEMPLATES, NO PATTERNS."
        format_rules = (
            "- Exactly four options labelled A-D, exactly one of them correct\n"
            "- Distractors must be plausible misreadings of the topic"
        )
    else:
        angles = _SHORT_ANGLES
        schema = {
            "type": "short",
            "stem": f"<{params.difficulty} question about {params.topic}>",
            "model_answer": "<the key philosophical understanding expected>",
            "concept_tags": [params.topic],
            "difficulty": params.difficulty,
            "points": 5,
        }
        heading = "GENERATE FRESH Philosophy 101 short answer question - NO EXAMPLES, NO TEMPLATES."
        format_rules = "- Answerable in two to four sentences\n- model_answer states what a full-credit answer contains"

    return (
        f"{heading}\n\n"
        f"TOPIC: {params.topic}\n"
        f"DIFFICULTY: {params.difficulty}\n"
        f"UNIQUENESS SEED: {params.seed}\n"
        f"ANGLE: {params.angle}\n"
        f"VARIATION: {params.variation}\n\n"
        "ABSOLUTE REQUIREMENTS:\n"
        "- NEVER repeat any question pattern or wording\n"
        "- FRESH question generation from course concepts ONLY\n"
        f"{format_rules}\n\n"
        f"CURRICULUM: {CURRICULUM_SUMMARY}\n\n"
        f"RANDOMIZATION: Use angle {params.angle} ({_angle_legend(angles)}) "
        f"and variation {params.variation} for a completely unique approach.\n\n"
        "JSON ONLY:\n"
        f"{json.dumps(schema, indent=2)}"
    )


def build_grading_prompt(stem: str, model_answer: Optional[str], student_answer: str) -> str:
    return (
        "Grade this Philosophy 101 answer generously for philosophical substance.\n\n"
        f"QUESTION: {stem}\n"
        f"EXPECTED: {model_answer or '(no model answer supplied)'}\n"
        f"STUDENT ANSWER: {student_answer}\n\n"
        "GRADING STANDARDS:\n"
        "- Grade ONLY on philosophical substance - ignore grammar, spelling and style completely\n"
        "- Any answer showing correct philosophical understanding = at least 0.9\n"
        "- Complete philosophical understanding = 1.0\n"
        "- Partly correct or confused philosophical concepts = 0.5-0.8 with explanation\n"
        "- No relevant philosophical content = 0.0\n"
        "- verdict must agree with score: score >= 0.9 is correct, 0.5-0.89 is partial, below 0.5 is incorrect\n\n"
        "Return ONLY JSON (no markdown):\n"
        "{\n"
        '  "verdict": "correct" | "partial" | "incorrect",\n'
        '  "score": 0.0-1.0,\n'
        '  "rationale": "What the student understood philosophically"\n'
        "}"
    )


def build_contest_prompt(
    stem: str,
    student_answer: str,
    original_verdict: str,
    original_score: float,
    original_rationale: str,
    contest_reason: str,
) -> str:
    return (
        "Review this grade contestation for a Philosophy 101 diagnostic question.\n\n"
        f"ORIGINAL QUESTION: {stem}\n"
        f"STUDENT ANSWER: {student_answer}\n"
        f"ORIGINAL GRADE: {original_verdict} ({original_score:.2f}/1.0)\n"
        f"ORIGINAL RATIONALE: {original_rationale}\n\n"
        f"STUDENT CONTEST REASON: {contest_reason}\n\n"
        "REVIEW GUIDELINES:\n"
        "- IGNORE grammar, spelling and capitalization - grade ONLY philosophical substance\n"
        "- Be generous with partial credit for reasonable philosophical reasoning\n"
        "- If the student makes valid points about their understanding, award a higher score\n"
        "- Accept the contest only when new_score is higher than the original score\n\n"
        "Return ONLY JSON:\n"
        "{\n"
        '  "verdict": "contest_accepted" | "contest_denied",\n'
        '  "new_score": 0.0-1.0,\n'
        '  "rationale": "Explanation of the decision focusing on philosophical substance"\n'
        "}"
    )
