from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS plan_jobs (
    plan_key TEXT PRIMARY KEY,
    status TEXT NOT NULL CHECK (status IN ('running', 'ready', 'error')),
    request_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    data_json TEXT,
    error TEXT,
    error_code TEXT,
    preview TEXT,
    metrics_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_plan_jobs_status ON plan_jobs (status);
"""


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with connection(db_path) as conn:
        conn.executescript(SCHEMA_SQL)


@contextmanager
def connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path, timeout=10.0)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
