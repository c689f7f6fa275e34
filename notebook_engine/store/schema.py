"""SQLite schema for notebook stores.

Notes
-----
Timestamps are stored as fixed-width UTC ISO 8601 strings so that ordering by
the text column is chronological. Note bodies are zstandard-compressed JSON.
"""

from __future__ import annotations

SCHEMA_V1 = """
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS store_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notebooks (
    id            TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    creation_date TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id            TEXT PRIMARY KEY,
    notebook_id   TEXT NOT NULL,
    body          BLOB NOT NULL,
    creation_date TEXT NOT NULL,
    FOREIGN KEY (notebook_id) REFERENCES notebooks(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_notes_notebook_created ON notes(notebook_id, creation_date);
CREATE INDEX IF NOT EXISTS idx_notebooks_created ON notebooks(creation_date);

INSERT OR IGNORE INTO store_meta(key, value) VALUES('schema_version', '1');
"""
