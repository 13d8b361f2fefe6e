import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    db.init()
    yield str(db_path)
    db._pool.close_all()


class ScriptedGenerate:
    """Stand-in for ``providers.generate`` that replays canned model output."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, model, prompt, system_prompt="", **kwargs):
        self.calls.append({"model": model, "prompt": prompt, "system_prompt": system_prompt, **kwargs})
        if not self.responses:
            raise AssertionError("unexpected model call")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        if isinstance(nxt, (dict, list)):
            return json.dumps(nxt)
        return nxt


@pytest.fixture
def scripted_generate():
    return ScriptedGenerate


MCQ_PAYLOAD = {
    "type": "mcq",
    "stem": "In Plato's allegory, what do the shadows on the cave wall represent?",
    "options": {
        "A": "The Forms",
        "B": "Mere appearances mistaken for reality",
        "C": "The philosopher-kings",
        "D": "The sun",
    },
    "answer_key": "B",
    "concept_tags": ["Plato cave allegory"],
    "difficulty": "beginner",
    "points": 5,
}

SHORT_PAYLOAD = {
    "type": "short",
    "stem": "Explain why a Gettier case is a problem for the JTB analysis of knowledge.",
    "model_answer": "It shows a justified true belief that is true by luck, so JTB is not sufficient for knowledge.",
    "concept_tags": ["Gettier epistemology"],
    "difficulty": "intermediate",
    "points": 5,
}


@pytest.fixture
def mcq_payload():
    return dict(MCQ_PAYLOAD)


@pytest.fixture
def short_payload():
    return dict(SHORT_PAYLOAD)
