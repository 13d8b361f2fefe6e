# app.py: Philosophy diagnostics service
# - Sync handlers (FastAPI threadpool): one upstream LLM call per request, no retry
# - Provider/parse failures surface as JSON errors, never as placeholder content

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, ValidationError

import db
import providers
from diagnostics import SessionRegistry
from env_validation import validate_environment
from errors import InvalidQuestionError, LedgerError, OracleError
from schemas import DiagnosticQuestion

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        db.init()
        logger.info("Diagnostics service ready; default model: %s", providers.DEFAULT_MODEL)
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    finally:
        SESSIONS.clear()


app = FastAPI(title="Philosophy Diagnostics", version="1.0.0", lifespan=_lifespan)

SESSIONS = SessionRegistry()

_PROTECTED_PREFIXES = ("/diagnostics", "/session/end")


def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path.rstrip("/")


def _extract_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    candidate = header_value.strip()
    if not candidate:
        return None
    if " " in candidate:
        prefix, token = candidate.split(" ", 1)
        if prefix.lower() in {"bearer", "token"}:
            candidate = token.strip()
        else:
            candidate = token.strip() or prefix.strip()
    return candidate or None


def _request_token(request: Request) -> Optional[str]:
    return (
        _extract_token(request.headers.get("authorization"))
        or request.headers.get("x-token")
        or request.query_params.get("token")
    )


@app.middleware("http")
async def _enforce_session(request: Request, call_next):
    normalized_path = _normalize_path(request.url.path)
    if normalized_path.startswith(_PROTECTED_PREFIXES):
        token = _request_token(request)
        session = SESSIONS.get(token)
        if session is None:
            return JSONResponse(
                status_code=401,
                content={"error": "unauthenticated", "detail": "missing or invalid session token"},
            )
        request.state.token = token
        request.state.session = session
    return await call_next(request)


def _error_body(code: str, exc: Exception) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": code, "detail": str(exc)}
    extra = getattr(exc, "detail", None)
    if extra:
        body["upstream"] = extra
    return body


@app.exception_handler(OracleError)
async def _oracle_error_handler(_: Request, exc: OracleError):
    logger.warning("Oracle failure (%s): %s", exc.code, exc)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc))


@app.exception_handler(LedgerError)
async def _ledger_error_handler(_: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": str(exc)})


@app.exception_handler(InvalidQuestionError)
async def _invalid_question_handler(_: Request, exc: InvalidQuestionError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": str(exc)})


# ---------- Request bodies ----------

class SessionStartBody(BaseModel):
    user_id: str = Field(min_length=1, validation_alias=AliasChoices("user_id", "userId"))


class NewQuestionBody(BaseModel):
    topic: Optional[str] = None
    level: Optional[str] = "adaptive"
    session_history: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("session_history", "sessionHistory"),
    )
    model: Optional[str] = None


class GradeBody(BaseModel):
    type: str
    stem: str
    options: Optional[Any] = None
    answer_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("answer_key", "answerKey"))
    model_answer: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("model_answer", "modelAnswer")
    )
    concept_tags: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("concept_tags", "conceptTags")
    )
    difficulty: Optional[str] = "intermediate"
    points: float = 5
    student_answer: str = Field(validation_alias=AliasChoices("student_answer", "studentAnswer"))
    model: Optional[str] = None
    time_spent: float = Field(default=0.0, ge=0, validation_alias=AliasChoices("time_spent", "timeSpent"))

    model_config = {"protected_namespaces": ()}


class ContestBody(BaseModel):
    answer_id: int = Field(validation_alias=AliasChoices("answer_id", "answerId"))
    contest_reason: str = Field(min_length=1, validation_alias=AliasChoices("contest_reason", "contestReason"))
    model: Optional[str] = None

    model_config = {"str_strip_whitespace": True}


def _question_from_body(body: GradeBody) -> DiagnosticQuestion:
    try:
        return DiagnosticQuestion(
            type=body.type,
            stem=body.stem,
            options=body.options,
            answer_key=body.answer_key,
            model_answer=body.model_answer,
            concept_tags=body.concept_tags,
            difficulty=body.difficulty,
            points=body.points,
        )
    except ValidationError as exc:
        messages = "; ".join(err.get("msg", "") for err in exc.errors())
        raise InvalidQuestionError(messages or "invalid question") from exc


# ---------- Routes ----------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/models")
def models():
    return providers.available_models()


@app.post("/session/start")
def session_start(body: SessionStartBody):
    token = SESSIONS.open(body.user_id.strip())
    return {"token": token, "user_id": body.user_id.strip()}


@app.post("/session/end")
def session_end(request: Request):
    return {"closed": SESSIONS.close(request.state.token)}


@app.post("/diagnostics/new-question")
def diagnostics_new_question(body: NewQuestionBody, request: Request):
    session = request.state.session
    question = session.next_question(
        body.level,
        topic=body.topic,
        model=body.model,
        session_history=body.session_history,
    )
    return question.model_dump()


@app.post("/diagnostics/grade")
def diagnostics_grade(body: GradeBody, request: Request):
    session = request.state.session
    question = _question_from_body(body)
    outcome = session.grade(question, body.student_answer, model=body.model, time_spent=body.time_spent)
    return outcome.as_dict()


@app.get("/diagnostics/history")
def diagnostics_history(request: Request, limit: int = 50):
    session = request.state.session
    answers = session.history(max(1, min(int(limit), 50)))
    return [answer.model_dump(mode="json") for answer in answers]


@app.post("/diagnostics/contest")
def diagnostics_contest(body: ContestBody, request: Request):
    session = request.state.session
    result = session.contest(body.answer_id, body.contest_reason, model=body.model)
    return result.model_dump(by_alias=True)


@app.get("/diagnostics/report")
def diagnostics_report(request: Request):
    return request.state.session.report()
