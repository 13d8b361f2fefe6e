"""Pydantic schemas for diagnostics payloads and model-output parsing helpers."""

from __future__ import annotations

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from errors import MalformedResponseError

__all__ = [
    "Difficulty",
    "QuestionType",
    "Verdict",
    "DiagnosticQuestion",
    "GradeResult",
    "ContestResult",
    "DiagnosticAnswer",
    "PerformanceItem",
    "TopicProgress",
    "verdict_for_score",
    "extract_json",
    "parse_json_safe",
]

Difficulty = Literal["beginner", "intermediate", "advanced"]
QuestionType = Literal["mcq", "short"]
Verdict = Literal["correct", "partial", "incorrect"]

DIFFICULTY_LEVELS: tuple[str, ...] = ("beginner", "intermediate", "advanced")

# score >= PASS_THRESHOLD is never "incorrect"
PASS_THRESHOLD = 0.5
CORRECT_THRESHOLD = 0.9

_OPTION_PREFIX = re.compile(r"^\s*\(?([A-Za-z])[\).:]\s*")


def _clamp_unit(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"score must be numeric, got {value!r}") from exc
    if math.isnan(number) or math.isinf(number):
        raise ValueError("score must be finite")
    return max(0.0, min(1.0, number))


def verdict_for_score(score: float) -> str:
    if score >= CORRECT_THRESHOLD:
        return "correct"
    if score >= PASS_THRESHOLD:
        return "partial"
    return "incorrect"


class DiagnosticQuestion(BaseModel):
    """A generated diagnostic question; immutable once issued."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    type: QuestionType
    stem: str = Field(min_length=1)
    options: Dict[str, str] | None = None
    answer_key: str | None = None
    model_answer: str | None = None
    concept_tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "intermediate"
    points: float = 5

    model_config = {"frozen": True, "extra": "ignore", "protected_namespaces": ()}

    @field_validator("options", mode="before")
    @classmethod
    def _normalize_options(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k).strip().upper(): str(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            options: Dict[str, str] = {}
            for idx, entry in enumerate(value):
                text = str(entry)
                match = _OPTION_PREFIX.match(text)
                if match:
                    options[match.group(1).upper()] = text[match.end():].strip()
                else:
                    options[chr(ord("A") + idx)] = text.strip()
            return options
        return value

    @field_validator("answer_key", mode="before")
    @classmethod
    def _normalize_answer_key(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        match = _OPTION_PREFIX.match(text)
        return match.group(1).upper() if match else text.upper()

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalize_difficulty(cls, value: Any) -> Any:
        return str(value).strip().lower() if value is not None else "intermediate"

    @model_validator(mode="after")
    def _check_type_fields(self) -> "DiagnosticQuestion":
        if self.type == "mcq":
            if not self.options:
                raise ValueError("mcq question requires options")
            if not self.answer_key or self.answer_key not in self.options:
                raise ValueError("mcq answer_key must name one of the options")
        elif not (self.model_answer or "").strip():
            raise ValueError("short question requires a model_answer")
        return self

    @property
    def topic(self) -> str:
        return self.concept_tags[0] if self.concept_tags else "Philosophy"


class GradeResult(BaseModel):
    verdict: Verdict
    score: float
    rationale: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        return _clamp_unit(value)

    @field_validator("verdict", mode="before")
    @classmethod
    def _normalize_verdict(cls, value: Any) -> Any:
        return str(value).strip().lower() if value is not None else value

    @model_validator(mode="before")
    @classmethod
    def _derive_missing_verdict(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("verdict") and data.get("score") is not None:
            data = dict(data)
            data["verdict"] = verdict_for_score(_clamp_unit(data["score"]))
        return data

    @model_validator(mode="after")
    def _reconcile_verdict(self) -> "GradeResult":
        # The score is authoritative; the verdict must agree with the pass threshold.
        if self.score >= PASS_THRESHOLD and self.verdict == "incorrect":
            self.verdict = verdict_for_score(self.score)
        elif self.score < PASS_THRESHOLD and self.verdict != "incorrect":
            self.verdict = "incorrect"
        return self


class ContestResult(BaseModel):
    """Outcome of a contest review; serialized with the client's camelCase keys."""

    verdict: Literal["contest_accepted", "contest_denied"]
    new_score: float = Field(
        validation_alias=AliasChoices("new_score", "newScore"),
        serialization_alias="newScore",
    )
    rationale: str = ""
    original_score: float | None = Field(
        default=None,
        validation_alias=AliasChoices("original_score", "originalScore"),
        serialization_alias="originalScore",
    )

    model_config = {"serialize_by_alias": True}

    @field_validator("new_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        return _clamp_unit(value)

    @field_validator("verdict", mode="before")
    @classmethod
    def _normalize_verdict(cls, value: Any) -> Any:
        return str(value).strip().lower() if value is not None else value

    @model_validator(mode="after")
    def _reconcile_verdict(self) -> "ContestResult":
        # A contest is accepted exactly when it raises the score.
        if self.original_score is not None:
            self.verdict = "contest_accepted" if self.new_score > self.original_score else "contest_denied"
        return self


class DiagnosticAnswer(BaseModel):
    id: int
    user_id: str
    question_data: Dict[str, Any]
    student_answer: str
    verdict: Verdict
    score: float = Field(ge=0.0, le=1.0)
    rationale: str
    is_contested: bool = False
    contest_reason: str | None = None
    contested_score: float | None = Field(default=None, ge=0.0, le=1.0)
    contested_rationale: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _contest_fields_match_flag(self) -> "DiagnosticAnswer":
        contested = (self.contest_reason, self.contested_score, self.contested_rationale)
        if self.is_contested and any(value is None for value in contested):
            raise ValueError("contested answers must carry reason, score and rationale")
        if not self.is_contested and any(value is not None for value in contested):
            raise ValueError("uncontested answers must not carry contest fields")
        return self

    @property
    def topic(self) -> str | None:
        tags = self.question_data.get("concept_tags") or []
        return str(tags[0]) if tags else None


class PerformanceItem(BaseModel):
    correct: bool
    topic: str
    difficulty: Difficulty
    time_spent: float = 0.0


class TopicProgress(BaseModel):
    correct: int = 0
    attempted: int = 0


# ---------- model output parsing ----------

_T = TypeVar("_T", bound=BaseModel)

_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


def _strip_fences(text: str) -> str:
    stripped = _FENCE_OPEN.sub("", text, count=1)
    return _FENCE_CLOSE.sub("", stripped, count=1).strip()


def _find_first_json_object(text: str) -> str:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def extract_json(text: str) -> Any:
    """Pull the JSON object or array out of free-form model output."""

    if not text or not text.strip():
        raise MalformedResponseError("Model returned no JSON content")

    cleaned = _strip_fences(text.strip())
    obj_start, arr_start = cleaned.find("{"), cleaned.find("[")
    if obj_start == -1 and arr_start == -1:
        raise MalformedResponseError("No JSON object or array in model output", detail=text[:300])

    if arr_start != -1 and (obj_start == -1 or arr_start < obj_start):
        start, end = arr_start, cleaned.rfind("]")
    else:
        start, end = obj_start, cleaned.rfind("}")

    if end > start:
        try:
            return json.loads(cleaned[start : end + 1])
        except ValueError:
            pass

    # Prose after the payload can contain stray braces; fall back to a balanced scan.
    try:
        return json.loads(_find_first_json_object(cleaned))
    except ValueError as exc:
        raise MalformedResponseError("Model output is not valid JSON", detail=text[:300]) from exc


def parse_json_safe(text: str, model: Type[_T], overrides: Optional[Mapping[str, Any]] = None) -> _T:
    """Extract JSON from ``text`` and validate it into ``model``.

    ``overrides`` replace keys of a JSON object before validation, so values
    the caller dictates are never rejected as the model wrote them.
    """

    payload = extract_json(text)
    if overrides and isinstance(payload, dict):
        payload = {**payload, **overrides}
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Model output does not match {model.__name__}",
            detail=str(exc)[:500],
        ) from exc
