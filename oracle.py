"""Content oracle: the language model as the source of questions and grades.

The oracle never substitutes local content. Provider failures and unparseable
output propagate as ``OracleError`` subclasses.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

import providers
from prompts import (
    CONTEST_PROMPT_VERSION,
    GRADING_PROMPT_VERSION,
    QUESTION_PROMPT_VERSION,
    SYSTEM_PROMPT,
    QuestionParams,
    build_contest_prompt,
    build_grading_prompt,
    build_question_prompt,
)
from schemas import ContestResult, DiagnosticQuestion, GradeResult, parse_json_safe

logger = logging.getLogger(__name__)

GenerateFn = Callable[..., str]


class ContentOracle:
    def __init__(self, generate: Optional[GenerateFn] = None):
        self._generate = generate or providers.generate

    def _ask(self, model: Optional[str], prompt: str, *, user_id: Optional[str], prompt_kind: str) -> str:
        return self._generate(
            model,
            prompt,
            SYSTEM_PROMPT,
            user_id=user_id,
            prompt_kind=prompt_kind,
        )

    def generate_question(
        self,
        params: QuestionParams,
        *,
        model: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DiagnosticQuestion:
        raw = self._ask(
            model,
            build_question_prompt(params),
            user_id=user_id,
            prompt_kind=QUESTION_PROMPT_VERSION,
        )
        # The estimator owns the level; whatever label the model wrote is replaced.
        question = parse_json_safe(raw, DiagnosticQuestion, overrides={"difficulty": params.difficulty})
        update: dict[str, Any] = {}
        if not question.concept_tags:
            update["concept_tags"] = [params.topic]
        elif question.concept_tags[0] != params.topic:
            update["concept_tags"] = [params.topic, *[t for t in question.concept_tags if t != params.topic]]
        logger.info(
            "Generated %s question on %r at %s (seed %s)",
            question.type,
            params.topic,
            params.difficulty,
            params.seed,
        )
        return question.model_copy(update=update)

    def grade_answer(
        self,
        question: DiagnosticQuestion,
        student_answer: str,
        *,
        model: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> GradeResult:
        raw = self._ask(
            model,
            build_grading_prompt(question.stem, question.model_answer, student_answer),
            user_id=user_id,
            prompt_kind=GRADING_PROMPT_VERSION,
        )
        return parse_json_safe(raw, GradeResult)

    def review_contest(
        self,
        answer: Mapping[str, Any],
        contest_reason: str,
        *,
        model: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ContestResult:
        question = answer.get("question_data") or {}
        original_score = float(answer.get("score") or 0.0)
        prompt = build_contest_prompt(
            stem=str(question.get("stem") or ""),
            student_answer=str(answer.get("student_answer") or ""),
            original_verdict=str(answer.get("verdict") or ""),
            original_score=original_score,
            original_rationale=str(answer.get("rationale") or ""),
            contest_reason=contest_reason,
        )
        raw = self._ask(model, prompt, user_id=user_id, prompt_kind=CONTEST_PROMPT_VERSION)
        return parse_json_safe(raw, ContestResult, overrides={"original_score": original_score})
