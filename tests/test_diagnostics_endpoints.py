import asyncio
import json
import random
from typing import Optional
from urllib.parse import urlencode

import pytest

import app
from diagnostics import DiagnosticSession, SessionRegistry
from errors import UpstreamError
from oracle import ContentOracle


async def _call_app(
    method: str,
    path: str,
    *,
    payload: Optional[dict] = None,
    query: Optional[dict] = None,
    token: Optional[str] = None,
):
    body = b""
    headers = [(b"host", b"testserver")]
    if token:
        headers.append((b"authorization", f"Bearer {token}".encode()))
    if payload is not None:
        body = json.dumps(payload).encode("utf-8")
        headers.extend(
            [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
            ]
        )
    query_string = urlencode(query or {}, doseq=True).encode()
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method.upper(),
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": query_string,
        "headers": headers,
        "client": ("testclient", 12345),
        "server": ("testserver", 80),
        "state": {},
    }

    messages = []

    async def receive():
        nonlocal body
        if body:
            chunk, body = body, b""
            return {"type": "http.request", "body": chunk, "more_body": False}
        return {"type": "http.disconnect"}

    async def send(message):
        messages.append(message)

    await app.app(scope, receive, send)
    status = 500
    body_bytes = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")
    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


def _post(path: str, payload: dict, token: Optional[str] = None):
    return asyncio.run(_call_app("POST", path, payload=payload, token=token))


def _get(path: str, query: Optional[dict] = None, token: Optional[str] = None):
    return asyncio.run(_call_app("GET", path, query=query, token=token))


@pytest.fixture
def model_output(monkeypatch, temp_db, scripted_generate):
    """Queue of raw model replies shared by every session opened during the test."""
    generate = scripted_generate()
    registry = SessionRegistry(
        lambda user_id: DiagnosticSession(user_id, ContentOracle(generate), rng=random.Random(3))
    )
    monkeypatch.setattr(app, "SESSIONS", registry)
    return generate


def _login(user_id="learner"):
    status, data = _post("/session/start", {"userId": user_id})
    assert status == 200
    assert data["user_id"] == user_id
    return data["token"]


def test_health_and_models_are_public(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert _get("/health") == (200, {"status": "ok"})
    status, data = _get("/models")
    assert status == 200
    assert {"name": "openai", "label": "AI2 (GPT-4)", "configured": True} in data


def test_diagnostics_require_session_token(model_output):
    status, data = _post("/diagnostics/new-question", {"level": "beginner"})
    assert status == 401
    assert data["error"] == "unauthenticated"

    status, _ = _get("/diagnostics/history", token="forged")
    assert status == 401
    assert model_output.calls == []


def test_token_accepted_from_query_string(model_output):
    token = _login()
    status, data = _get("/diagnostics/history", query={"token": token})
    assert status == 200
    assert data == []


def test_full_diagnostic_round(model_output, mcq_payload):
    token = _login()
    model_output.responses.append(mcq_payload)

    status, question = _post("/diagnostics/new-question", {"level": "beginner", "sessionHistory": []}, token)
    assert status == 200
    assert question["type"] == "mcq"
    assert question["difficulty"] == "beginner"
    assert question["answer_key"] == "B"

    status, graded = _post(
        "/diagnostics/grade",
        {**question, "studentAnswer": "b", "timeSpent": 8000},
        token,
    )
    assert status == 200
    assert graded["verdict"] == "correct"
    assert graded["score"] == 1.0
    assert graded["weighted_score"] == 1.0
    answer_id = graded["answer_id"]

    status, history = _get("/diagnostics/history", token=token)
    assert status == 200
    assert [entry["id"] for entry in history] == [answer_id]
    assert history[0]["is_contested"] is False

    status, report = _get("/diagnostics/report", token=token)
    assert status == 200
    assert report["overview"]["accuracy"] == 100
    assert report["overview"]["average_time"] == 8


def test_contest_twice_returns_conflict(model_output, short_payload):
    token = _login()
    model_output.responses.extend(
        [
            {"verdict": "partial", "score": 0.5, "rationale": "Half right"},
            {"verdict": "contest_accepted", "newScore": 0.9, "rationale": "Reconsidered"},
        ]
    )

    status, graded = _post("/diagnostics/grade", {**short_payload, "student_answer": "Lucky belief"}, token)
    assert status == 200
    assert graded["verdict"] == "partial"

    contest = {"answerId": graded["answer_id"], "contestReason": "I explained the luck condition"}
    status, result = _post("/diagnostics/contest", contest, token)
    assert status == 200
    assert result["verdict"] == "contest_accepted"
    assert set(result) == {"verdict", "newScore", "rationale", "originalScore"}
    assert result["newScore"] == pytest.approx(0.9)
    assert result["originalScore"] == pytest.approx(0.5)

    status, data = _post("/diagnostics/contest", contest, token)
    assert status == 409
    assert data["error"] == "already_contested"

    status, history = _get("/diagnostics/history", token=token)
    entry = history[0]
    assert entry["score"] == 0.5
    assert entry["verdict"] == "partial"
    assert entry["is_contested"] is True
    assert entry["contested_score"] == pytest.approx(0.9)


def test_contest_unknown_answer_is_404(model_output):
    token = _login()
    status, data = _post("/diagnostics/contest", {"answer_id": 42, "contest_reason": "why"}, token)
    assert status == 404
    assert data["error"] == "answer_not_found"


def test_answers_are_scoped_to_their_owner(model_output, mcq_payload):
    alice = _login("alice")
    status, graded = _post("/diagnostics/grade", {**mcq_payload, "student_answer": "A"}, alice)
    assert status == 200

    bob = _login("bob")
    status, _ = _post("/diagnostics/contest", {"answer_id": graded["answer_id"], "contest_reason": "mine"}, bob)
    assert status == 404
    assert _get("/diagnostics/history", token=bob) == (200, [])


def test_malformed_model_output_is_502(model_output):
    token = _login()
    model_output.responses.append("Here is a wonderful question about Plato, enjoy!")
    status, data = _post("/diagnostics/new-question", {"level": "beginner"}, token)
    assert status == 502
    assert data["error"] == "malformed_response"


def test_upstream_failure_is_502_with_detail(model_output, short_payload):
    token = _login()
    model_output.responses.append(
        UpstreamError("AI2 (GPT-4) API error: 503", upstream_status=503, detail="overloaded")
    )
    status, data = _post("/diagnostics/grade", {**short_payload, "student_answer": "x"}, token)
    assert status == 502
    assert data == {"error": "upstream_error", "detail": "AI2 (GPT-4) API error: 503", "upstream": "overloaded"}
    assert _get("/diagnostics/history", token=token) == (200, [])


def test_grade_rejects_incomplete_question(model_output):
    token = _login()
    status, data = _post(
        "/diagnostics/grade",
        {"type": "short", "stem": "Explain Gyges", "student_answer": "invisibility"},
        token,
    )
    assert status == 422
    assert data["error"] == "invalid_question"


def test_session_end_invalidates_token(model_output):
    token = _login()
    assert _post("/session/end", {}, token) == (200, {"closed": True})
    status, _ = _get("/diagnostics/history", token=token)
    assert status == 401


def test_blank_contest_reason_is_rejected(model_output, mcq_payload):
    token = _login()
    status, graded = _post("/diagnostics/grade", {**mcq_payload, "student_answer": "C"}, token)
    assert status == 200

    status, _ = _post("/diagnostics/contest", {"answerId": graded["answer_id"], "contestReason": "   "}, token)
    assert status == 422
    status, history = _get("/diagnostics/history", token=token)
    assert history[0]["is_contested"] is False


def test_contest_reason_is_stored_trimmed(model_output, mcq_payload):
    token = _login()
    model_output.responses.append({"verdict": "contest_denied", "newScore": 0.0, "rationale": "Still B"})
    _, graded = _post("/diagnostics/grade", {**mcq_payload, "student_answer": "C"}, token)

    status, _ = _post(
        "/diagnostics/contest",
        {"answerId": graded["answer_id"], "contestReason": "  C fits too  "},
        token,
    )
    assert status == 200
    _, history = _get("/diagnostics/history", token=token)
    assert history[0]["contest_reason"] == "C fits too"
