from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .version import APP_VERSION


SWEEP_INDEX = "ix_tasks_status_repeat"


@dataclass
class MigrationReport:
    previous_db_version: Optional[str]
    current_db_version: str
    applied_steps: List[str]


def _sqlite_object_exists(conn, kind: str, name: str) -> bool:
    q = text("SELECT name FROM sqlite_master WHERE type=:k AND name=:n")
    row = conn.execute(q, {"k": kind, "n": name}).fetchone()
    return bool(row and row[0] == name)


def _get_meta(conn, key: str) -> Optional[str]:
    if not _sqlite_object_exists(conn, "table", "app_meta"):
        return None
    row = conn.execute(text("SELECT value FROM app_meta WHERE key=:k"), {"k": key}).fetchone()
    return str(row[0]) if row and row[0] is not None else None


def _set_meta(conn, key: str, value: str) -> None:
    conn.execute(
        text(
            "INSERT INTO app_meta(key, value, updated_at) VALUES (:k, :v, :u) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at"
        ),
        {"k": key, "v": value, "u": datetime.utcnow().replace(tzinfo=None)},
    )


def ensure_db_schema(engine: Engine) -> MigrationReport:
    """Record the schema version in `app_meta` and add the sweep index.

    Tables themselves come from `Base.metadata.create_all`, which runs first.
    """
    applied: List[str] = []

    with engine.begin() as conn:
        if not _sqlite_object_exists(conn, "table", "app_meta"):
            conn.execute(
                text(
                    "CREATE TABLE IF NOT EXISTS app_meta ("
                    "  key VARCHAR(64) PRIMARY KEY,"
                    "  value VARCHAR(255) NOT NULL,"
                    "  updated_at DATETIME NOT NULL"
                    ")"
                )
            )
            applied.append("create_table:app_meta")

        prev = _get_meta(conn, "db_version")

        # The sweep scans completed tasks that still carry an interval.
        if _sqlite_object_exists(conn, "table", "tasks") and not _sqlite_object_exists(conn, "index", SWEEP_INDEX):
            conn.execute(text(f"CREATE INDEX {SWEEP_INDEX} ON tasks(status, repeat_interval)"))
            applied.append(f"create_index:{SWEEP_INDEX}")

        _set_meta(conn, "db_version", APP_VERSION)
        _set_meta(conn, "app_version", APP_VERSION)

    return MigrationReport(previous_db_version=prev, current_db_version=APP_VERSION, applied_steps=applied)
