import pytest

import db
from errors import AlreadyContestedError, AnswerNotFoundError, UpstreamError
from ledger import SessionLedger
from schemas import ContestResult, DiagnosticQuestion, GradeResult


class _Reviewer:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def review_contest(self, answer, contest_reason, *, model=None, user_id=None):
        self.calls.append({"answer": answer, "reason": contest_reason, "model": model, "user_id": user_id})
        nxt = self.results.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


@pytest.fixture
def question(short_payload):
    return DiagnosticQuestion.model_validate(short_payload)


def _graded(ledger, question, score=0.5, verdict="partial"):
    return ledger.record(question, "Belief that is true by luck", GradeResult(verdict=verdict, score=score, rationale="half"))


def test_record_and_history(temp_db, question):
    ledger = SessionLedger("alice", _Reviewer())
    first = _graded(ledger, question, 0.5)
    second = _graded(ledger, question, 1.0, "correct")

    history = ledger.history()
    assert [entry.id for entry in history] == [second, first]
    assert history[1].question_data["stem"] == question.stem
    assert history[1].is_contested is False
    assert ledger.recent_scores() == [1.0, 0.5]
    assert ledger.recent_topics() == ["Gettier epistemology", "Gettier epistemology"]


def test_ledgers_are_isolated_per_user(temp_db, question):
    answer_id = _graded(SessionLedger("alice", _Reviewer()), question)
    bob = SessionLedger("bob", _Reviewer())
    assert bob.history() == []
    with pytest.raises(AnswerNotFoundError):
        bob.get(answer_id)


def test_contest_attaches_outcome_and_keeps_original(temp_db, question):
    reviewer = _Reviewer(ContestResult(verdict="contest_accepted", new_score=0.9, rationale="Good point"))
    ledger = SessionLedger("alice", reviewer)
    answer_id = _graded(ledger, question, 0.5)

    result = ledger.contest(answer_id, "I did mention luck", model="ai2")

    assert result.verdict == "contest_accepted"
    assert reviewer.calls[0]["reason"] == "I did mention luck"
    assert reviewer.calls[0]["answer"]["score"] == 0.5
    stored = ledger.get(answer_id)
    assert stored.is_contested is True
    assert stored.score == 0.5
    assert stored.verdict == "partial"
    assert stored.rationale == "half"
    assert stored.contested_score == pytest.approx(0.9)
    assert stored.contested_rationale == "Good point"
    assert stored.contest_reason == "I did mention luck"


def test_second_contest_is_rejected_without_calling_reviewer(temp_db, question):
    reviewer = _Reviewer(ContestResult(verdict="contest_denied", new_score=0.5, rationale="No"))
    ledger = SessionLedger("alice", reviewer)
    answer_id = _graded(ledger, question)
    ledger.contest(answer_id, "first")

    with pytest.raises(AlreadyContestedError):
        ledger.contest(answer_id, "second")
    assert len(reviewer.calls) == 1
    assert ledger.get(answer_id).contest_reason == "first"


def test_contest_lost_race_is_rejected(temp_db, question):
    ledger = SessionLedger("alice", None)
    answer_id = _graded(ledger, question)

    class _RacingReviewer:
        def review_contest(self, answer, contest_reason, **kwargs):
            db.mark_diagnostic_contested(answer_id, "alice", "concurrent", 0.8, "won the race")
            return ContestResult(verdict="contest_accepted", new_score=1.0, rationale="late")

    ledger.reviewer = _RacingReviewer()
    with pytest.raises(AlreadyContestedError):
        ledger.contest(answer_id, "mine")
    stored = ledger.get(answer_id)
    assert stored.contest_reason == "concurrent"
    assert stored.contested_score == pytest.approx(0.8)


def test_contest_unknown_answer(temp_db):
    with pytest.raises(AnswerNotFoundError):
        SessionLedger("alice", _Reviewer()).contest(999, "why")


def test_failed_review_leaves_answer_contestable(temp_db, question):
    reviewer = _Reviewer(
        UpstreamError("provider down", upstream_status=503),
        ContestResult(verdict="contest_denied", new_score=0.5, rationale="Grade stands"),
    )
    ledger = SessionLedger("alice", reviewer)
    answer_id = _graded(ledger, question)

    with pytest.raises(UpstreamError):
        ledger.contest(answer_id, "retry me")
    assert ledger.get(answer_id).is_contested is False

    assert ledger.contest(answer_id, "retry me").verdict == "contest_denied"
    assert ledger.get(answer_id).is_contested is True
