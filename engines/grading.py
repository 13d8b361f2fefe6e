"""Route diagnostic answers to the right grader.

Multiple-choice answers are compared against the key locally. Free-text
answers always go to the oracle; there is no local fallback grader.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from schemas import DiagnosticQuestion, GradeResult

logger = logging.getLogger(__name__)

# (stem keyword, hint) pairs checked in order
_STUDY_HINTS = (
    ("epistemology", "This concept deals with how we gain knowledge and what counts as justified belief."),
    ("gettier", "Gettier cases show that justified true belief can still fall short of knowledge because of luck."),
    (
        "cave",
        "Remember that Plato's allegory shows the journey from ignorance to knowledge - "
        "shadows represent misconceptions, sunlight represents truth.",
    ),
    (
        "frankfurt",
        "Frankfurt makes precise distinctions: truth-telling states facts, lying deliberately deceives, "
        "bullshit ignores truth entirely.",
    ),
    (
        "euthyphro",
        "The Euthyphro dilemma asks whether things are good because God commands them, "
        "or if God commands them because they are good.",
    ),
    ("evil", "The problem of evil questions how an all-good, all-powerful God can allow suffering to exist."),
    ("gyges", "The Ring of Gyges asks whether people are just only because they fear being caught."),
)
_DEFAULT_HINT = "Keep studying the core concepts - you're building important philosophical understanding."


class AnswerGrader(Protocol):
    def grade_answer(
        self,
        question: DiagnosticQuestion,
        student_answer: str,
        *,
        model: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GradeResult:
        ...


def study_hint(stem: str) -> str:
    lowered = (stem or "").lower()
    for keyword, hint in _STUDY_HINTS:
        if keyword in lowered:
            return hint
    return _DEFAULT_HINT


def normalize_choice(answer: Optional[str]) -> str:
    return str(answer or "").strip().upper()


def grade_multiple_choice(question: DiagnosticQuestion, student_answer: str) -> GradeResult:
    options = question.options or {}
    key = normalize_choice(question.answer_key)
    correct_text = options.get(key, key)
    if normalize_choice(student_answer) == key:
        return GradeResult(
            verdict="correct",
            score=1.0,
            rationale=f'Excellent work! "{correct_text}" is exactly right.',
        )
    return GradeResult(
        verdict="incorrect",
        score=0.0,
        rationale=f'Not quite. The correct answer is "{correct_text}". {study_hint(question.stem)}',
    )


class GradingDispatcher:
    def __init__(self, oracle: AnswerGrader):
        self.oracle = oracle

    def grade(
        self,
        question: DiagnosticQuestion,
        student_answer: str,
        *,
        model: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GradeResult:
        if question.type == "mcq":
            return grade_multiple_choice(question, student_answer)

        result = self.oracle.grade_answer(question, student_answer, model=model, user_id=user_id)
        logger.info("Short answer graded %s (%.2f) for %s", result.verdict, result.score, user_id or "anonymous")
        return result
