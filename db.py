import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init():
    if DB_PATH != ":memory:":
        Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS diagnostic_answers (
              id                  INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id             TEXT NOT NULL,
              question_data       TEXT NOT NULL,
              student_answer      TEXT NOT NULL,
              verdict             TEXT NOT NULL CHECK (verdict IN ('correct','partial','incorrect')),
              score               REAL NOT NULL CHECK (score >= 0 AND score <= 1),
              rationale           TEXT NOT NULL,
              is_contested        INTEGER NOT NULL DEFAULT 0,
              contest_reason      TEXT,
              contested_score     REAL,
              contested_rationale TEXT,
              created_at          TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_diagnostic_answers_user
              ON diagnostic_answers(user_id, id);

            CREATE TABLE IF NOT EXISTS llm_metrics (
              id            INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id       TEXT,
              provider      TEXT NOT NULL,
              model_id      TEXT NOT NULL,
              prompt_kind   TEXT,
              latency_ms    INTEGER NOT NULL,
              tokens_in     INTEGER,
              tokens_out    INTEGER,
              outcome       TEXT NOT NULL,
              created_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        con.commit()


# -------------- diagnostic answers --------------
def _row_to_answer(row: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        question = json.loads(row["question_data"]) if row["question_data"] else {}
    except json.JSONDecodeError:
        question = {}
    return {
        "id": int(row["id"]),
        "user_id": row["user_id"],
        "question_data": question,
        "student_answer": row["student_answer"],
        "verdict": row["verdict"],
        "score": float(row["score"]),
        "rationale": row["rationale"],
        "is_contested": bool(row["is_contested"]),
        "contest_reason": row["contest_reason"],
        "contested_score": row["contested_score"],
        "contested_rationale": row["contested_rationale"],
        "created_at": row["created_at"],
    }


def insert_diagnostic_answer(
    user_id: str,
    question_data: Dict[str, Any],
    student_answer: str,
    verdict: str,
    score: float,
    rationale: str,
) -> int:
    cur = _exec(
        """
        INSERT INTO diagnostic_answers
          (user_id, question_data, student_answer, verdict, score, rationale, created_at)
        VALUES (?,?,?,?,?,?,?)
        """,
        (
            user_id,
            json.dumps(question_data, ensure_ascii=False),
            student_answer,
            verdict,
            float(score),
            rationale,
            _now_iso(),
        ),
    )
    return int(cur.lastrowid)


def get_diagnostic_answer(answer_id: int, user_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM diagnostic_answers WHERE id = ? AND user_id = ?",
        (int(answer_id), user_id),
    )
    return _row_to_answer(rows[0]) if rows else None


def list_diagnostic_answers(user_id: str, limit: int = 50) -> list[Dict[str, Any]]:
    """Return the user's answers, most recent first."""
    rows = _query(
        """
        SELECT * FROM diagnostic_answers
         WHERE user_id = ?
         ORDER BY id DESC
         LIMIT ?
        """,
        (user_id, max(1, int(limit))),
    )
    return [_row_to_answer(row) for row in rows]


def mark_diagnostic_contested(
    answer_id: int,
    user_id: str,
    contest_reason: str,
    contested_score: float,
    contested_rationale: str,
) -> bool:
    """Attach a contest outcome; False when the row is missing or already contested."""
    cur = _exec(
        """
        UPDATE diagnostic_answers
           SET is_contested = 1,
               contest_reason = ?,
               contested_score = ?,
               contested_rationale = ?
         WHERE id = ? AND user_id = ? AND is_contested = 0
        """,
        (contest_reason, float(contested_score), contested_rationale, int(answer_id), user_id),
    )
    return cur.rowcount == 1


# -------------- llm metrics --------------
def record_llm_metric(
    user_id: Optional[str],
    provider: str,
    model_id: str,
    latency_ms: int,
    tokens_in: Optional[int],
    tokens_out: Optional[int],
    *,
    prompt_kind: Optional[str] = None,
    outcome: str = "ok",
) -> None:
    _exec(
        """
        INSERT INTO llm_metrics(user_id, provider, model_id, prompt_kind, latency_ms, tokens_in, tokens_out, outcome)
        VALUES (?,?,?,?,?,?,?,?)
        """,
        (
            user_id,
            provider,
            model_id,
            prompt_kind,
            int(latency_ms),
            None if tokens_in is None else int(tokens_in),
            None if tokens_out is None else int(tokens_out),
            outcome,
        ),
    )


def list_llm_metrics(user_id: Optional[str] = None, limit: int = 100) -> list[Dict[str, Any]]:
    if user_id:
        rows = _query(
            "SELECT * FROM llm_metrics WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, int(limit)),
        )
    else:
        rows = _query("SELECT * FROM llm_metrics ORDER BY id DESC LIMIT ?", (int(limit),))
    return [dict(row) for row in rows]
