"""Per-session performance statistics and the end-of-session report."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from engines.difficulty import LEVELS
from schemas import PerformanceItem, TopicProgress

TREND_LIMIT = 20


@dataclass
class SessionStats:
    total_questions: int = 0
    correct_answers: int = 0
    current_streak: int = 0
    best_streak: int = 0
    average_time: float = 0.0  # milliseconds
    performance_trend: List[PerformanceItem] = field(default_factory=list)
    topics_progress: Dict[str, TopicProgress] = field(default_factory=dict)

    def record(self, *, correct: bool, topic: str, difficulty: str, time_spent: float = 0.0) -> None:
        """Fold one graded answer into the running statistics."""
        time_spent = max(0.0, float(time_spent or 0.0))
        self.average_time = round(
            (self.average_time * self.total_questions + time_spent) / (self.total_questions + 1)
        )
        self.total_questions += 1
        if correct:
            self.correct_answers += 1
            self.current_streak += 1
        else:
            self.current_streak = 0
        self.best_streak = max(self.best_streak, self.current_streak)

        item = PerformanceItem(correct=correct, topic=topic, difficulty=difficulty, time_spent=time_spent)
        self.performance_trend = (self.performance_trend + [item])[-TREND_LIMIT:]

        progress = self.topics_progress.setdefault(topic, TopicProgress())
        progress.attempted += 1
        if correct:
            progress.correct += 1

    @property
    def accuracy(self) -> int:
        if not self.total_questions:
            return 0
        return round(self.correct_answers / self.total_questions * 100)

    def difficulty_breakdown(self) -> Dict[str, Dict[str, int]]:
        breakdown = {level: {"total": 0, "correct": 0} for level in LEVELS}
        for item in self.performance_trend:
            bucket = breakdown.get(item.difficulty)
            if bucket is None:
                continue
            bucket["total"] += 1
            if item.correct:
                bucket["correct"] += 1
        return breakdown

    def weak_topics(self, min_attempts: int = 3, max_accuracy: float = 0.5) -> List[str]:
        return [
            topic
            for topic, progress in self.topics_progress.items()
            if progress.attempted >= min_attempts and progress.correct / progress.attempted < max_accuracy
        ]

    def recommendations(self) -> List[str]:
        notes: List[str] = []
        if self.total_questions:
            if self.accuracy < 50:
                notes.append("Focus on fundamental concepts before advancing to harder topics")
            elif self.accuracy > 80:
                notes.append("Ready for advanced-level questions and complex philosophical arguments")
        weak = self.weak_topics()
        if weak:
            notes.append(f"Consider reviewing: {', '.join(weak)}")
        return notes

    def report(self) -> Dict[str, Any]:
        return {
            "overview": {
                "total_questions": self.total_questions,
                "correct_answers": self.correct_answers,
                "accuracy": self.accuracy,
                "current_streak": self.current_streak,
                "best_streak": self.best_streak,
                "average_time": round(self.average_time / 1000),
            },
            "difficulty_breakdown": self.difficulty_breakdown(),
            "topic_analysis": {topic: p.model_dump() for topic, p in self.topics_progress.items()},
            "recent_trend": [item.model_dump() for item in self.performance_trend[-10:]],
            "recommendations": self.recommendations(),
        }

