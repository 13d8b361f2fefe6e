"""Topic rotation for diagnostic questions."""

from __future__ import annotations

import random
from typing import Optional, Sequence

PHILOSOPHY_TOPICS: tuple[str, ...] = (
    "Plato cave allegory",
    "Frankfurt truth lies bullshit",
    "Gettier epistemology",
    "Euthyphro divine command",
    "Problem of Evil theodicy",
    "Ring of Gyges moral philosophy",
)


class TopicRotator:
    """Draw the next topic uniformly while avoiding the most recent ones.

    ``recent_topics`` is ordered most recent first.
    """

    def __init__(
        self,
        topics: Sequence[str] = PHILOSOPHY_TOPICS,
        *,
        avoid_last: int = 3,
        rng: Optional[random.Random] = None,
    ):
        if not topics:
            raise ValueError("TopicRotator needs at least one topic")
        self.topics = tuple(dict.fromkeys(topics))
        self.avoid_last = avoid_last
        self.rng = rng or random.Random()

    def candidates(self, recent_topics: Sequence[Optional[str]]) -> list[str]:
        recent = [topic for topic in recent_topics if topic]
        blocked = set(recent[: self.avoid_last])
        available = [topic for topic in self.topics if topic not in blocked]
        if not available and recent:
            available = [topic for topic in self.topics if topic != recent[0]]
        return available or list(self.topics)

    def pick(self, recent_topics: Sequence[Optional[str]] = ()) -> str:
        return self.rng.choice(self.candidates(recent_topics))
