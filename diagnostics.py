"""Adaptive diagnostics session loop.

A ``DiagnosticSession`` is created when a learner starts a session and
discarded when it ends. It ties together difficulty estimation, topic
rotation, the content oracle, grading and the answer ledger, and keeps the
learner's running statistics for that session only.
"""

from __future__ import annotations

import logging
import random
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from engines.difficulty import DifficultyEstimator, weighted_score
from engines.grading import GradingDispatcher
from engines.session_stats import SessionStats
from engines.topic_rotation import TopicRotator
from ledger import SessionLedger
from oracle import ContentOracle
from prompts import QuestionParams
from schemas import ContestResult, DiagnosticAnswer, DiagnosticQuestion, GradeResult

logger = logging.getLogger(__name__)

DIFFICULTY_HISTORY_LIMIT = 20
TOPIC_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class GradeOutcome:
    grade: GradeResult
    answer_id: int
    weighted_score: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            **self.grade.model_dump(),
            "answer_id": self.answer_id,
            "weighted_score": self.weighted_score,
        }


def _client_history_scores(session_history: Optional[Sequence[Mapping[str, Any]]]) -> List[float]:
    """Scores from client-held history, which arrives oldest first."""
    scores: List[float] = []
    for entry in session_history or ():
        if not isinstance(entry, Mapping):
            continue
        if entry.get("score") is not None:
            try:
                scores.append(float(entry["score"]))
            except (TypeError, ValueError):
                continue
        elif "correct" in entry:
            scores.append(1.0 if entry["correct"] else 0.0)
    return list(reversed(scores))


class DiagnosticSession:
    def __init__(
        self,
        user_id: str,
        oracle: ContentOracle,
        *,
        ledger: Optional[SessionLedger] = None,
        rotator: Optional[TopicRotator] = None,
        estimator: Optional[DifficultyEstimator] = None,
        rng: Optional[random.Random] = None,
    ):
        self.user_id = user_id
        self.oracle = oracle
        self.rng = rng or random.Random()
        self.ledger = ledger or SessionLedger(user_id, oracle)
        self.rotator = rotator or TopicRotator(rng=self.rng)
        self.estimator = estimator or DifficultyEstimator()
        self.dispatcher = GradingDispatcher(oracle)
        self.stats = SessionStats()

    def _question_params(self, topic: str, difficulty: str) -> QuestionParams:
        return QuestionParams(
            topic=topic,
            difficulty=difficulty,
            question_type="mcq" if self.rng.random() < 0.5 else "short",
            seed=self.rng.randrange(1_000_000_000),
            angle=self.rng.randint(1, 8),
            variation=self.rng.randint(1, 5),
        )

    def next_question(
        self,
        level: Optional[str] = None,
        *,
        topic: Optional[str] = None,
        model: Optional[str] = None,
        session_history: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> DiagnosticQuestion:
        scores = self.ledger.recent_scores(DIFFICULTY_HISTORY_LIMIT)
        if not scores:
            scores = _client_history_scores(session_history)
        assessment = self.estimator.assess(scores, level)

        chosen_topic = (topic or "").strip() or self.rotator.pick(
            self.ledger.recent_topics(TOPIC_HISTORY_LIMIT)
        )
        logger.info(
            "Next question for %s: topic=%r difficulty=%s (%s)",
            self.user_id,
            chosen_topic,
            assessment.level,
            assessment.reason,
        )
        params = self._question_params(chosen_topic, assessment.level)
        return self.oracle.generate_question(params, model=model, user_id=self.user_id)

    def grade(
        self,
        question: DiagnosticQuestion,
        student_answer: str,
        *,
        model: Optional[str] = None,
        time_spent: float = 0.0,
    ) -> GradeOutcome:
        grade = self.dispatcher.grade(question, student_answer, model=model, user_id=self.user_id)
        answer_id = self.ledger.record(question, student_answer, grade)
        self.stats.record(
            correct=grade.verdict == "correct",
            topic=question.topic,
            difficulty=question.difficulty,
            time_spent=time_spent,
        )
        return GradeOutcome(
            grade=grade,
            answer_id=answer_id,
            weighted_score=weighted_score(grade.score, question.difficulty),
        )

    def contest(self, answer_id: int, contest_reason: str, *, model: Optional[str] = None) -> ContestResult:
        return self.ledger.contest(answer_id, contest_reason, model=model)

    def history(self, limit: int = 50) -> List[DiagnosticAnswer]:
        return self.ledger.history(limit)

    def report(self) -> Dict[str, Any]:
        return self.stats.report()


SessionFactory = Callable[[str], DiagnosticSession]


class SessionRegistry:
    """Token-keyed store of live diagnostic sessions."""

    def __init__(self, factory: Optional[SessionFactory] = None):
        self._factory = factory or (lambda user_id: DiagnosticSession(user_id, ContentOracle()))
        self._sessions: Dict[str, DiagnosticSession] = {}
        self._lock = threading.Lock()

    def open(self, user_id: str) -> str:
        token = secrets.token_urlsafe(24)
        session = self._factory(user_id)
        with self._lock:
            self._sessions[token] = session
        logger.info("Opened diagnostics session for %s", user_id)
        return token

    def get(self, token: Optional[str]) -> Optional[DiagnosticSession]:
        if not token:
            return None
        with self._lock:
            return self._sessions.get(token)

    def close(self, token: str) -> bool:
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is not None:
            logger.info("Closed diagnostics session for %s", session.user_id)
        return session is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
