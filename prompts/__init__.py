"""Prompt templates sent to the language-model providers."""
from prompts.diagnostics import (
    CONTEST_PROMPT_VERSION,
    GRADING_PROMPT_VERSION,
    QUESTION_PROMPT_VERSION,
    SYSTEM_PROMPT,
    QuestionParams,
    build_contest_prompt,
    build_grading_prompt,
    build_question_prompt,
)

__all__ = [
    "CONTEST_PROMPT_VERSION",
    "GRADING_PROMPT_VERSION",
    "QUESTION_PROMPT_VERSION",
    "SYSTEM_PROMPT",
    "QuestionParams",
    "build_contest_prompt",
    "build_grading_prompt",
    "build_question_prompt",
]
