from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import UTC, datetime
from typing import Any

from .db import get_connection, transaction


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_question_id() -> str:
    return f"q_{uuid.uuid4().hex[:12]}"


def _form_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "session": row["session"],
        "questions": json.loads(row["questions_json"]),
        "is_active": bool(row["is_active"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _plan_from_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "form_id": row["form_id"],
        "form_name": row["form_name"],
        "session": row["session"],
        "answers": json.loads(row["answers_json"]),
        "summary": json.loads(row["summary_json"]),
        "status": row["status"],
        "teacher_uid": row["teacher_uid"],
        "teacher_email": row["teacher_email"],
        "teacher_name": row["teacher_name"],
        "pdf_url": row["pdf_url"],
        "review_comment": row["review_comment"],
        "reviewer_name": row["reviewer_name"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def create_form(name: str, session: str, questions: list[dict[str, Any]]) -> str:
    form_id = f"f_{uuid.uuid4().hex}"
    now = _now_iso()
    with transaction() as conn:
        conn.execute(
            """
            INSERT INTO forms (id, name, session, questions_json, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            """,
            (form_id, name, session, json.dumps(questions, ensure_ascii=False), now, now),
        )
    return form_id


def _deactivate_others(conn: sqlite3.Connection, form_id: str) -> None:
    conn.execute(
        "UPDATE forms SET is_active = 0, updated_at = ? WHERE id != ? AND is_active = 1",
        (_now_iso(), form_id),
    )


def update_form(
    form_id: str, name: str, session: str, questions: list[dict[str, Any]], is_active: bool
) -> bool:
    with transaction() as conn:
        cursor = conn.execute(
            """
            UPDATE forms
            SET name = ?, session = ?, questions_json = ?, is_active = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                name,
                session,
                json.dumps(questions, ensure_ascii=False),
                1 if is_active else 0,
                _now_iso(),
                form_id,
            ),
        )
        if is_active and cursor.rowcount > 0:
            _deactivate_others(conn, form_id)
        return cursor.rowcount > 0


def set_form_active(form_id: str, is_active: bool) -> bool:
    with transaction() as conn:
        cursor = conn.execute(
            "UPDATE forms SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if is_active else 0, _now_iso(), form_id),
        )
        if is_active and cursor.rowcount > 0:
            _deactivate_others(conn, form_id)
        return cursor.rowcount > 0


def delete_form(form_id: str) -> bool:
    with transaction() as conn:
        cursor = conn.execute("DELETE FROM forms WHERE id = ?", (form_id,))
        return cursor.rowcount > 0


def get_form(form_id: str) -> dict[str, Any] | None:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM forms WHERE id = ?", (form_id,)).fetchone()
        return _form_from_row(row) if row else None


def get_active_form() -> dict[str, Any] | None:
    with get_connection() as conn:
        row = conn.execute(
            """
            SELECT *
            FROM forms
            WHERE is_active = 1
            ORDER BY updated_at DESC
            LIMIT 1
            """
        ).fetchone()
        return _form_from_row(row) if row else None


def list_forms() -> list[dict[str, Any]]:
    with get_connection() as conn:
        rows = conn.execute("SELECT * FROM forms ORDER BY created_at DESC").fetchall()
    return [_form_from_row(row) for row in rows]


def create_plan(
    form: dict[str, Any],
    answers: list[dict[str, Any]],
    summary: dict[str, int],
    teacher_uid: str,
    teacher_email: str,
    teacher_name: str,
    pdf_url: str,
) -> str:
    plan_id = f"p_{uuid.uuid4().hex}"
    now = _now_iso()
    with transaction() as conn:
        conn.execute(
            """
            INSERT INTO course_plans (
                id, form_id, form_name, session, answers_json, summary_json, status,
                teacher_uid, teacher_email, teacher_name, pdf_url, review_comment,
                reviewer_name, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, 'soumis', ?, ?, ?, ?, '', NULL, ?, ?)
            """,
            (
                plan_id,
                form["id"],
                form.get("name") or "",
                form.get("session") or "",
                json.dumps(answers, ensure_ascii=False),
                json.dumps(summary),
                teacher_uid,
                teacher_email,
                teacher_name,
                pdf_url,
                now,
                now,
            ),
        )
    return plan_id


def get_plan(plan_id: str) -> dict[str, Any] | None:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM course_plans WHERE id = ?", (plan_id,)).fetchone()
        return _plan_from_row(row) if row else None


def list_plans(
    teacher: str | None = None,
    status: str | None = None,
    session: str | None = None,
    teacher_uid: str | None = None,
) -> list[dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if teacher:
        needle = f"%{teacher.lower()}%"
        clauses.append("(LOWER(teacher_email) LIKE ? OR LOWER(teacher_name) LIKE ?)")
        params.extend([needle, needle])
    if status:
        clauses.append("status = ?")
        params.append(status)
    if session:
        clauses.append("LOWER(session) = ?")
        params.append(session.lower())
    if teacher_uid:
        clauses.append("teacher_uid = ?")
        params.append(teacher_uid)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with get_connection() as conn:
        rows = conn.execute(
            f"SELECT * FROM course_plans {where} ORDER BY created_at DESC",
            params,
        ).fetchall()
    return [_plan_from_row(row) for row in rows]


def review_plan(plan_id: str, status: str, comment: str, reviewer_name: str) -> bool:
    with transaction() as conn:
        cursor = conn.execute(
            """
            UPDATE course_plans
            SET status = ?, review_comment = ?, reviewer_name = ?, updated_at = ?
            WHERE id = ?
            """,
            (status, comment, reviewer_name, _now_iso(), plan_id),
        )
        return cursor.rowcount > 0
