import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

GradeCallback = Callable[[int], Tuple[Dict[str, Any], int, int]]
"""Receives the assigned attempt number, returns ``(raw_result, computed_score, points)``."""


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return {}
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return {}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS activity_attempts (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              activity_id     TEXT NOT NULL,
              activity_type   TEXT NOT NULL CHECK (activity_type IN ('quiz', 'lab', 'dialogue')),
              user_id         TEXT NOT NULL,
              course_id       TEXT NOT NULL,
              attempt_number  INTEGER NOT NULL CHECK (attempt_number >= 1),
              raw_result      TEXT NOT NULL,
              computed_score  INTEGER NOT NULL,
              points_awarded  INTEGER NOT NULL,
              created_at      TEXT NOT NULL,
              UNIQUE (user_id, activity_id, attempt_number)
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_user_course
              ON activity_attempts(user_id, course_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_attempts_activity
              ON activity_attempts(activity_id);

            CREATE TABLE IF NOT EXISTS course_points (
              user_id         TEXT NOT NULL,
              course_id       TEXT NOT NULL,
              total_points    INTEGER NOT NULL DEFAULT 0 CHECK (total_points >= 0),
              attempts_count  INTEGER NOT NULL DEFAULT 0,
              created_at      TEXT NOT NULL,
              updated_at      TEXT NOT NULL,
              PRIMARY KEY (user_id, course_id)
            );

            CREATE INDEX IF NOT EXISTS idx_course_points_course
              ON course_points(course_id, total_points DESC);
            """
        )
        con.commit()


# -------------- attempts --------------
def _attempt_dict(row: sqlite3.Row) -> Dict[str, Any]:
    item = dict(row)
    item["attempt_id"] = item.pop("id")
    item["raw_result"] = _decode_json_field(item.get("raw_result")) or {}
    return item


def _next_attempt_number(con: sqlite3.Connection, user_id: str, activity_id: str) -> int:
    row = con.execute(
        """
        SELECT COALESCE(MAX(attempt_number), 0) + 1
        FROM activity_attempts
        WHERE user_id = ? AND activity_id = ?
        """,
        (user_id, activity_id),
    ).fetchone()
    return int(row[0])


def next_attempt_number(user_id: str, activity_id: str) -> int:
    """Attempt number the next submission of ``activity_id`` would receive."""
    with _conn() as con:
        return _next_attempt_number(con, user_id, activity_id)


def _increment_course_points(
    con: sqlite3.Connection,
    user_id: str,
    course_id: str,
    points: int,
    now: str,
) -> Dict[str, Any]:
    con.execute(
        """
        INSERT INTO course_points(user_id, course_id, total_points, attempts_count, created_at, updated_at)
        VALUES (?,?,?,1,?,?)
        ON CONFLICT(user_id, course_id) DO UPDATE SET
          total_points = course_points.total_points + excluded.total_points,
          attempts_count = course_points.attempts_count + 1,
          updated_at = excluded.updated_at
        """,
        (user_id, course_id, max(int(points), 0), now, now),
    )
    row = con.execute(
        """
        SELECT user_id, course_id, total_points, attempts_count, created_at, updated_at
        FROM course_points
        WHERE user_id = ? AND course_id = ?
        """,
        (user_id, course_id),
    ).fetchone()
    return dict(row)


def record_graded_attempt(
    user_id: str,
    course_id: str,
    activity_id: str,
    activity_type: str,
    grade: GradeCallback,
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Store one attempt and add its points to the course ledger.

    The attempt number is assigned, ``grade`` is evaluated and the ledger is
    incremented inside a single write transaction, so concurrent submissions
    for the same learner neither share an attempt number nor lose points.
    Returns ``(attempt, ledger)`` as plain dicts.
    """
    with _pool.transaction() as con:
        attempt_number = _next_attempt_number(con, user_id, activity_id)
        raw_result, computed_score, points = grade(attempt_number)
        now = _utc_now()
        cur = con.execute(
            """
            INSERT INTO activity_attempts(
              activity_id, activity_type, user_id, course_id, attempt_number,
              raw_result, computed_score, points_awarded, created_at
            )
            VALUES (?,?,?,?,?,?,?,?,?)
            """,
            (
                activity_id,
                activity_type,
                user_id,
                course_id,
                attempt_number,
                json_dumps(raw_result),
                int(computed_score),
                int(points),
                now,
            ),
        )
        attempt_id = int(cur.lastrowid)
        ledger = _increment_course_points(con, user_id, course_id, points, now)
        row = con.execute(
            """
            SELECT id, activity_id, activity_type, user_id, course_id, attempt_number,
                   raw_result, computed_score, points_awarded, created_at
            FROM activity_attempts WHERE id = ?
            """,
            (attempt_id,),
        ).fetchone()
    return _attempt_dict(row), ledger


def get_attempt(attempt_id: int) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, activity_id, activity_type, user_id, course_id, attempt_number,
               raw_result, computed_score, points_awarded, created_at
        FROM activity_attempts
        WHERE id = ?
        """,
        (int(attempt_id),),
    )
    return _attempt_dict(rows[0]) if rows else None


def list_attempts(
    user_id: Optional[str] = None,
    *,
    activity_id: Optional[str] = None,
    course_id: Optional[str] = None,
    limit: int = 100,
) -> list[Dict[str, Any]]:
    clauses = []
    params: list[Any] = []
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if activity_id:
        clauses.append("activity_id = ?")
        params.append(activity_id)
    if course_id:
        clauses.append("course_id = ?")
        params.append(course_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    params.append(int(limit))
    rows = _query(
        f"""
        SELECT id, activity_id, activity_type, user_id, course_id, attempt_number,
               raw_result, computed_score, points_awarded, created_at
        FROM activity_attempts
        {where}
        ORDER BY id DESC
        LIMIT ?
        """,
        params,
    )
    return [_attempt_dict(row) for row in rows]


# -------------- course ledgers --------------
def get_course_ledger(user_id: str, course_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT user_id, course_id, total_points, attempts_count, created_at, updated_at
        FROM course_points
        WHERE user_id = ? AND course_id = ?
        """,
        (user_id, course_id),
    )
    return dict(rows[0]) if rows else None


def list_course_ledgers(course_id: str, limit: int = 100) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT user_id, course_id, total_points, attempts_count, created_at, updated_at
        FROM course_points
        WHERE course_id = ?
        ORDER BY total_points DESC, user_id ASC
        LIMIT ?
        """,
        (course_id, int(limit)),
    )
    return [dict(row) for row in rows]


def list_course_point_totals(course_id: str) -> list[int]:
    """Every ledger total in a course, unpaged, for tier distributions."""
    rows = _query("SELECT total_points FROM course_points WHERE course_id = ?", (course_id,))
    return [int(row["total_points"]) for row in rows]


def list_user_ledgers(user_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT user_id, course_id, total_points, attempts_count, created_at, updated_at
        FROM course_points
        WHERE user_id = ?
        ORDER BY course_id ASC
        """,
        (user_id,),
    )
    return [dict(row) for row in rows]

