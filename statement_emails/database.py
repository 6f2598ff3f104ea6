"""SQLite connection helpers and schema for the statement scheduler.

Tables:
    app_settings           - Key/value application settings, including the
                             hidden last-sent statement markers
    customer_portal_users  - Portal users and their statement opt-in flags
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

# SQLite journal mode for concurrent reads while the scheduler writes
_PRAGMA_SETTINGS = [
    "PRAGMA journal_mode=WAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
]


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_settings (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    key                 TEXT NOT NULL UNIQUE,
    value               TEXT NOT NULL DEFAULT '',
    category            TEXT NOT NULL DEFAULT 'General',
    data_type           TEXT NOT NULL DEFAULT 'string',
    description         TEXT NOT NULL DEFAULT '',
    display_order       INTEGER NOT NULL DEFAULT 0,
    is_visible          INTEGER NOT NULL DEFAULT 1,
    is_editable         INTEGER NOT NULL DEFAULT 1,
    last_modified_at    TEXT,
    last_modified_by    TEXT
);

CREATE TABLE IF NOT EXISTS customer_portal_users (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    card_code           TEXT NOT NULL UNIQUE,
    card_name           TEXT NOT NULL DEFAULT '',
    email               TEXT,
    receive_statements  INTEGER NOT NULL DEFAULT 1,
    is_active           INTEGER NOT NULL DEFAULT 1,
    status              TEXT NOT NULL DEFAULT 'Active',
    created_at          TEXT NOT NULL DEFAULT '',
    updated_at          TEXT
);

CREATE INDEX IF NOT EXISTS idx_settings_category ON app_settings(category);
CREATE INDEX IF NOT EXISTS idx_portal_users_status ON customer_portal_users(status);
"""


def now_iso() -> str:
    """Return current UTC datetime as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def connect(db_path: str | Path) -> sqlite3.Connection:
    """Open a new SQLite connection with row_factory and pragmas."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    for pragma in _PRAGMA_SETTINGS:
        conn.execute(pragma)
    return conn


def init_db(db_path: str | Path) -> None:
    """Create tables and indexes if they don't exist."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(path)
    try:
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()
