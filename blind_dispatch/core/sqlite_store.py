from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Union

from .types import ExerciseModelAssignment, InteractionRecord, ModelRecord


def connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    _init_db(conn)
    return conn


def _init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS ai_models (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            display_name TEXT,
            provider TEXT NOT NULL,
            model_id TEXT NOT NULL,
            configuration_json TEXT NOT NULL DEFAULT '{}',
            capabilities_json TEXT NOT NULL DEFAULT '["text"]',
            is_active INTEGER NOT NULL DEFAULT 1,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS exercise_models (
            exercise_id TEXT NOT NULL,
            model_id TEXT NOT NULL,
            blind_name TEXT NOT NULL,
            temperature_override REAL,
            position INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (exercise_id, model_id),
            UNIQUE (exercise_id, blind_name)
        );

        CREATE TABLE IF NOT EXISTS interactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            exercise_id TEXT NOT NULL,
            model_id TEXT NOT NULL,
            session_id TEXT NOT NULL,
            user_id TEXT,
            prompt TEXT NOT NULL,
            response TEXT NOT NULL,
            tokens INTEGER,
            metadata_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        );
        """
    )
    conn.commit()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_model(row: sqlite3.Row) -> ModelRecord:
    return ModelRecord(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        provider=row["provider"],
        model_id=row["model_id"],
        configuration=json.loads(row["configuration_json"] or "{}"),
        capabilities=set(json.loads(row["capabilities_json"] or "[]")),
        is_active=bool(row["is_active"]),
    )


def _row_to_assignment(row: sqlite3.Row) -> ExerciseModelAssignment:
    return ExerciseModelAssignment(
        exercise_id=row["exercise_id"],
        model_id=row["model_id"],
        blind_name=row["blind_name"],
        temperature_override=row["temperature_override"],
        position=row["position"],
    )


def upsert_model(conn: sqlite3.Connection, model: ModelRecord) -> None:
    conn.execute(
        """
        INSERT INTO ai_models
        (id, name, display_name, provider, model_id, configuration_json, capabilities_json, is_active, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name,
            display_name=excluded.display_name,
            provider=excluded.provider,
            model_id=excluded.model_id,
            configuration_json=excluded.configuration_json,
            capabilities_json=excluded.capabilities_json,
            is_active=excluded.is_active,
            updated_at=excluded.updated_at
        """,
        (
            model.id,
            model.name,
            model.display_name,
            model.provider,
            model.model_id,
            json.dumps(model.configuration, ensure_ascii=False),
            json.dumps(sorted(model.capabilities)),
            1 if model.is_active else 0,
            _now(),
        ),
    )
    conn.commit()


def fetch_model(conn: sqlite3.Connection, model_id: str) -> Union[ModelRecord, None]:
    row = conn.execute("SELECT * FROM ai_models WHERE id = ?", (model_id,)).fetchone()
    if not row:
        return None
    return _row_to_model(row)


def fetch_models(conn: sqlite3.Connection, active_only: bool = False) -> list[ModelRecord]:
    query = "SELECT * FROM ai_models"
    if active_only:
        query += " WHERE is_active = 1"
    rows = conn.execute(query + " ORDER BY name").fetchall()
    return [_row_to_model(row) for row in rows]


def set_model_active(conn: sqlite3.Connection, model_id: str, is_active: bool) -> bool:
    cur = conn.execute(
        "UPDATE ai_models SET is_active = ?, updated_at = ? WHERE id = ?",
        (1 if is_active else 0, _now(), model_id),
    )
    conn.commit()
    return cur.rowcount > 0


def delete_model(conn: sqlite3.Connection, model_id: str) -> bool:
    cur = conn.execute("DELETE FROM ai_models WHERE id = ?", (model_id,))
    conn.commit()
    return cur.rowcount > 0


def replace_exercise_models(
    conn: sqlite3.Connection,
    exercise_id: str,
    assignments: Iterable[ExerciseModelAssignment],
) -> None:
    """Delete every assignment of ``exercise_id`` and insert ``assignments`` in one transaction."""
    created_at = _now()
    payload = [
        (
            exercise_id,
            item.model_id,
            item.blind_name,
            item.temperature_override,
            item.position,
            created_at,
        )
        for item in assignments
    ]
    with conn:
        conn.execute("DELETE FROM exercise_models WHERE exercise_id = ?", (exercise_id,))
        if payload:
            conn.executemany(
                """
                INSERT INTO exercise_models
                (exercise_id, model_id, blind_name, temperature_override, position, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                payload,
            )


def fetch_exercise_assignments(
    conn: sqlite3.Connection, exercise_id: str
) -> list[ExerciseModelAssignment]:
    rows = conn.execute(
        """
        SELECT exercise_id, model_id, blind_name, temperature_override, position
        FROM exercise_models
        WHERE exercise_id = ?
        ORDER BY position
        """,
        (exercise_id,),
    ).fetchall()
    return [_row_to_assignment(row) for row in rows]


def fetch_assignment(
    conn: sqlite3.Connection, exercise_id: str, model_id: str
) -> Union[ExerciseModelAssignment, None]:
    row = conn.execute(
        """
        SELECT exercise_id, model_id, blind_name, temperature_override, position
        FROM exercise_models
        WHERE exercise_id = ? AND model_id = ?
        """,
        (exercise_id, model_id),
    ).fetchone()
    return _row_to_assignment(row) if row else None


def fetch_assignment_by_blind_name(
    conn: sqlite3.Connection, exercise_id: str, blind_name: str
) -> Union[ExerciseModelAssignment, None]:
    row = conn.execute(
        """
        SELECT exercise_id, model_id, blind_name, temperature_override, position
        FROM exercise_models
        WHERE exercise_id = ? AND blind_name = ?
        """,
        (exercise_id, blind_name),
    ).fetchone()
    return _row_to_assignment(row) if row else None


def insert_interaction(conn: sqlite3.Connection, record: InteractionRecord) -> int:
    cur = conn.execute(
        """
        INSERT INTO interactions
        (exercise_id, model_id, session_id, user_id, prompt, response, tokens, metadata_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.exercise_id,
            record.model_id,
            record.session_id,
            record.user_id,
            record.prompt,
            record.response,
            record.tokens,
            json.dumps(record.metadata, ensure_ascii=False, default=str),
            _now(),
        ),
    )
    conn.commit()
    return cur.lastrowid


def fetch_interactions(
    conn: sqlite3.Connection,
    exercise_id: Union[str, None] = None,
    limit: int = 1000,
) -> list[dict]:
    query = (
        "SELECT id, exercise_id, model_id, session_id, user_id, prompt, response, tokens,"
        " metadata_json, created_at FROM interactions"
    )
    params: tuple = ()
    if exercise_id:
        query += " WHERE exercise_id = ?"
        params = (exercise_id,)
    query += " ORDER BY id DESC LIMIT ?"
    rows = conn.execute(query, (*params, limit)).fetchall()
    items = []
    for row in rows:
        item = dict(row)
        item["metadata"] = json.loads(item.pop("metadata_json") or "{}")
        items.append(item)
    return items
