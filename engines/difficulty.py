"""Adaptive difficulty selection from graded answer history."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

LEVELS = ("beginner", "intermediate", "advanced")

DIFFICULTY_MULTIPLIERS = {
    "beginner": 1.0,
    "intermediate": 1.5,
    "advanced": 2.0,
}

HistoryEntry = Union[Mapping[str, Any], float, int]


@dataclass(frozen=True)
class DifficultyAssessment:
    level: str
    recent_accuracy: Optional[float]
    overall_accuracy: Optional[float]
    streak: int
    reason: str


def _score_of(entry: HistoryEntry) -> float:
    if isinstance(entry, Mapping):
        value = entry.get("score", 0.0)
    else:
        value = getattr(entry, "score", entry)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


class DifficultyEstimator:
    """Pick beginner/intermediate/advanced from rolling accuracy and streaks.

    History is ordered most recent first.
    """

    def __init__(self, recent_window: int = 5, pass_threshold: float = 0.5):
        self.recent_window = recent_window
        self.pass_threshold = pass_threshold

    @staticmethod
    def normalize_level(requested_level: Optional[str]) -> str:
        candidate = str(requested_level or "").strip().lower()
        return candidate if candidate in LEVELS else "beginner"

    def current_streak(self, history: Sequence[HistoryEntry]) -> int:
        """Count passing answers from the most recent one until the first miss."""
        streak = 0
        for entry in history[: self.recent_window]:
            if _score_of(entry) < self.pass_threshold:
                break
            streak += 1
        return streak

    def assess(
        self,
        history: Sequence[HistoryEntry],
        requested_level: Optional[str] = None,
    ) -> DifficultyAssessment:
        if not history:
            level = self.normalize_level(requested_level)
            return DifficultyAssessment(level, None, None, 0, "no history; using requested level")

        scores = [_score_of(entry) for entry in history]
        recent = _mean(scores[: self.recent_window])
        overall = _mean(scores)

        if recent >= 0.8 and overall >= 0.7:
            level, reason = "advanced", "consistently strong performance"
        elif recent >= 0.6 and overall >= 0.5:
            level, reason = "intermediate", "solid performance"
        elif recent < 0.4 or overall < 0.4:
            level, reason = "beginner", "struggling with current level"
        else:
            level, reason = "intermediate", "mixed performance"

        streak = self.current_streak(history)
        if streak >= 3 and level != "advanced":
            level, reason = "advanced", f"hot streak of {streak}"
        elif streak == 0 and recent < 0.3:
            level, reason = "beginner", "cold streak"

        return DifficultyAssessment(level, recent, overall, streak, reason)

    def estimate(self, history: Sequence[HistoryEntry], requested_level: Optional[str] = None) -> str:
        return self.assess(history, requested_level).level


_DEFAULT_ESTIMATOR = DifficultyEstimator()


def estimate_difficulty(history: Sequence[HistoryEntry], requested_level: Optional[str] = None) -> str:
    return _DEFAULT_ESTIMATOR.estimate(history, requested_level)


def current_streak(history: Sequence[HistoryEntry]) -> int:
    return _DEFAULT_ESTIMATOR.current_streak(history)


def weighted_score(score: float, difficulty: Optional[str]) -> float:
    """Scale a raw score by how hard the question was."""
    return float(score) * DIFFICULTY_MULTIPLIERS.get(str(difficulty or "").lower(), 1.0)
