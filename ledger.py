"""Per-user ledger of graded diagnostic answers and the contest workflow."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import db
from errors import AlreadyContestedError, AnswerNotFoundError
from schemas import ContestResult, DiagnosticAnswer, DiagnosticQuestion, GradeResult

logger = logging.getLogger(__name__)


class ContestReviewer(Protocol):
    def review_contest(
        self,
        answer: Dict[str, Any],
        contest_reason: str,
        *,
        model: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ContestResult:
        ...


class SessionLedger:
    """Append-only answer records owned by a single user.

    Records are only ever extended by a contest; original grades stay intact.
    """

    def __init__(self, user_id: str, reviewer: ContestReviewer, db_module=db):
        self.user_id = user_id
        self.reviewer = reviewer
        self._db = db_module

    def record(self, question: DiagnosticQuestion, student_answer: str, grade: GradeResult) -> int:
        answer_id = self._db.insert_diagnostic_answer(
            self.user_id,
            question.model_dump(),
            student_answer,
            grade.verdict,
            grade.score,
            grade.rationale,
        )
        logger.info("Recorded answer %s for %s: %s (%.2f)", answer_id, self.user_id, grade.verdict, grade.score)
        return answer_id

    def get(self, answer_id: int) -> DiagnosticAnswer:
        row = self._db.get_diagnostic_answer(answer_id, self.user_id)
        if row is None:
            raise AnswerNotFoundError(f"Answer {answer_id} not found")
        return DiagnosticAnswer.model_validate(row)

    def history(self, limit: int = 50) -> List[DiagnosticAnswer]:
        return [DiagnosticAnswer.model_validate(row) for row in self._db.list_diagnostic_answers(self.user_id, limit)]

    def recent_scores(self, limit: int = 20) -> List[float]:
        return [float(row["score"]) for row in self._db.list_diagnostic_answers(self.user_id, limit)]

    def recent_topics(self, limit: int = 10) -> List[str]:
        topics: List[str] = []
        for row in self._db.list_diagnostic_answers(self.user_id, limit):
            tags = (row.get("question_data") or {}).get("concept_tags") or []
            if tags:
                topics.append(str(tags[0]))
        return topics

    def contest(self, answer_id: int, contest_reason: str, *, model: Optional[str] = None) -> ContestResult:
        row = self._db.get_diagnostic_answer(answer_id, self.user_id)
        if row is None:
            raise AnswerNotFoundError(f"Answer {answer_id} not found")
        if row["is_contested"]:
            raise AlreadyContestedError(f"Answer {answer_id} has already been contested")

        result = self.reviewer.review_contest(row, contest_reason, model=model, user_id=self.user_id)

        # Conditional update: a concurrent contest that won the race leaves zero rows to update.
        updated = self._db.mark_diagnostic_contested(
            answer_id,
            self.user_id,
            contest_reason,
            result.new_score,
            result.rationale,
        )
        if not updated:
            raise AlreadyContestedError(f"Answer {answer_id} has already been contested")
        logger.info(
            "Contest on answer %s for %s: %s (%.2f -> %.2f)",
            answer_id,
            self.user_id,
            result.verdict,
            row["score"],
            result.new_score,
        )
        return result
