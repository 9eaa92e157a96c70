from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path

from .config import settings


def _resolve(path: Path) -> Path:
    if path.is_absolute():
        return path
    return (settings.base_dir / path).resolve()


def ensure_paths() -> None:
    _resolve(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    _resolve(settings.storage_path).mkdir(parents=True, exist_ok=True)


def get_connection() -> sqlite3.Connection:
    ensure_paths()
    conn = sqlite3.connect(_resolve(settings.db_path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction() -> sqlite3.Connection:
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    with transaction() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS forms (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                session TEXT NOT NULL,
                questions_json TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS course_plans (
                id TEXT PRIMARY KEY,
                form_id TEXT NOT NULL,
                form_name TEXT NOT NULL,
                session TEXT NOT NULL,
                answers_json TEXT NOT NULL,
                summary_json TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'soumis',
                teacher_uid TEXT NOT NULL,
                teacher_email TEXT NOT NULL DEFAULT '',
                teacher_name TEXT NOT NULL DEFAULT '',
                pdf_url TEXT NOT NULL,
                review_comment TEXT NOT NULL DEFAULT '',
                reviewer_name TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_forms_created_at ON forms(created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_plans_created_at ON course_plans(created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_plans_teacher ON course_plans(teacher_uid, created_at DESC);
            """
        )
