from __future__ import annotations

import re
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union

import aiosqlite

from assistant.services.config import get_settings

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

SCHEMA = """
CREATE TABLE IF NOT EXISTS licensees (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    revenue_share REAL NOT NULL DEFAULT 0.8
);

CREATE TABLE IF NOT EXISTS regions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    licensee_id TEXT REFERENCES licensees(id)
);

CREATE TABLE IF NOT EXISTS companies (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    domain TEXT,
    region_id TEXT REFERENCES regions(id),
    verification_status TEXT NOT NULL DEFAULT 'VERIFIED',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    company_id TEXT REFERENCES companies(id),
    name TEXT,
    email TEXT NOT NULL,
    role TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS consultants (
    id TEXT PRIMARY KEY,
    first_name TEXT,
    last_name TEXT,
    email TEXT NOT NULL,
    role TEXT NOT NULL,
    region_id TEXT REFERENCES regions(id),
    status TEXT NOT NULL DEFAULT 'ACTIVE'
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    job_code TEXT,
    title TEXT NOT NULL,
    status TEXT NOT NULL,
    company_id TEXT NOT NULL REFERENCES companies(id),
    region_id TEXT REFERENCES regions(id),
    location TEXT,
    department TEXT,
    assigned_consultant_id TEXT REFERENCES consultants(id),
    number_of_vacancies INTEGER NOT NULL DEFAULT 1,
    salary REAL,
    close_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS candidates (
    id TEXT PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS applications (
    id TEXT PRIMARY KEY,
    candidate_id TEXT NOT NULL REFERENCES candidates(id),
    job_id TEXT NOT NULL REFERENCES jobs(id),
    status TEXT NOT NULL,
    stage TEXT NOT NULL,
    score REAL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS interviews (
    id TEXT PRIMARY KEY,
    application_id TEXT NOT NULL REFERENCES applications(id),
    scheduled_date TEXT NOT NULL,
    status TEXT NOT NULL,
    interview_type TEXT,
    duration INTEGER,
    feedback TEXT
);

CREATE TABLE IF NOT EXISTS offers (
    id TEXT PRIMARY KEY,
    application_id TEXT NOT NULL REFERENCES applications(id),
    status TEXT NOT NULL,
    offer_amount REAL,
    sent_at TEXT,
    expiry_date TEXT,
    responded_at TEXT
);

CREATE TABLE IF NOT EXISTS commissions (
    id TEXT PRIMARY KEY,
    consultant_id TEXT NOT NULL REFERENCES consultants(id),
    job_id TEXT REFERENCES jobs(id),
    region_id TEXT REFERENCES regions(id),
    amount REAL NOT NULL,
    status TEXT NOT NULL,
    type TEXT,
    created_at TEXT NOT NULL,
    paid_at TEXT
);

CREATE TABLE IF NOT EXISTS commission_withdrawals (
    id TEXT PRIMARY KEY,
    consultant_id TEXT NOT NULL REFERENCES consultants(id),
    amount REAL NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    processed_at TEXT
);

CREATE TABLE IF NOT EXISTS leads (
    id TEXT PRIMARY KEY,
    company_name TEXT NOT NULL,
    contact_email TEXT,
    status TEXT NOT NULL,
    region_id TEXT REFERENCES regions(id),
    consultant_id TEXT REFERENCES consultants(id),
    estimated_value REAL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bills (
    id TEXT PRIMARY KEY,
    company_id TEXT NOT NULL REFERENCES companies(id),
    amount REAL NOT NULL,
    status TEXT NOT NULL,
    description TEXT,
    due_date TEXT,
    paid_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    activity_type TEXT NOT NULL,
    description TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL,
    performed_by TEXT,
    performed_by_email TEXT,
    performed_by_role TEXT,
    description TEXT,
    changes TEXT,
    performed_at TEXT NOT NULL
);
"""


async def connect_db() -> aiosqlite.Connection:
    settings = get_settings()
    conn = await aiosqlite.connect(settings.resolved_database_path)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@asynccontextmanager
async def db_connection() -> AsyncIterator[aiosqlite.Connection]:
    conn = await connect_db()
    try:
        yield conn
    finally:
        await conn.close()


def init_db(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


async def fetchall(conn, query: str, params: Union[tuple[Any, ...], dict[str, Any]] = ()) -> list[dict[str, Any]]:
    cursor = await conn.execute(query, params)
    return [dict(row) for row in await cursor.fetchall()]


async def fetchone(conn, query: str, params: Union[tuple[Any, ...], dict[str, Any]] = ()) -> Optional[dict[str, Any]]:
    cursor = await conn.execute(query, params)
    row = await cursor.fetchone()
    return dict(row) if row is not None else None


async def fetchvalue(conn, query: str, params: Union[tuple[Any, ...], dict[str, Any]] = ()) -> Any:
    cursor = await conn.execute(query, params)
    row = await cursor.fetchone()
    return row[0] if row is not None else None


def _column(name: str, alias: Optional[str]) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid filter column: {name!r}")
    if alias and "." not in name:
        return f"{alias}.{name}"
    return name


def build_where(filters: Optional[dict[str, Any]], alias: Optional[str] = None) -> tuple[str, list[Any]]:
    """Compile a filter mapping into a SQL condition and its parameters.

    Supported shapes::

        {"status": "OPEN"}                     -> status = ?
        {"closed_at": None}                    -> closed_at IS NULL
        {"region_id": {"in": ["r1", "r2"]}}    -> region_id IN (?, ?)
        {"title": {"contains": "eng"}}         -> LOWER(title) LIKE ?
        {"email": {"ieq": "A@B.COM"}}          -> LOWER(email) = LOWER(?)
        {"created_at": {"gte": a, "lte": b}}   -> created_at >= ? AND created_at <= ?
        {"status": {"not": "HIRED"}}           -> status != ?
        {"OR": [{...}, {...}]}, {"AND": [...]}

    An empty ``in`` list compiles to a condition that matches nothing.
    """
    if not filters:
        return "1 = 1", []

    clauses: list[str] = []
    params: list[Any] = []

    for key, value in filters.items():
        if key in ("OR", "AND"):
            parts = []
            for sub in value:
                sub_sql, sub_params = build_where(sub, alias)
                parts.append(f"({sub_sql})")
                params.extend(sub_params)
            if not parts:
                clauses.append("1 = 0" if key == "OR" else "1 = 1")
            else:
                clauses.append("(" + f" {key} ".join(parts) + ")")
            continue

        column = _column(key, alias)
        if value is None:
            clauses.append(f"{column} IS NULL")
        elif isinstance(value, dict):
            for op, operand in value.items():
                if op == "in":
                    values = list(operand)
                    if not values:
                        clauses.append("1 = 0")
                    else:
                        placeholders = ", ".join("?" for _ in values)
                        clauses.append(f"{column} IN ({placeholders})")
                        params.extend(values)
                elif op == "contains":
                    clauses.append(f"LOWER({column}) LIKE ?")
                    params.append(f"%{str(operand).lower()}%")
                elif op == "ieq":
                    clauses.append(f"LOWER({column}) = LOWER(?)")
                    params.append(operand)
                elif op == "gte":
                    clauses.append(f"{column} >= ?")
                    params.append(operand)
                elif op == "lte":
                    clauses.append(f"{column} <= ?")
                    params.append(operand)
                elif op == "not":
                    if operand is None:
                        clauses.append(f"{column} IS NOT NULL")
                    else:
                        clauses.append(f"{column} != ?")
                        params.append(operand)
                else:
                    raise ValueError(f"Unsupported filter operator: {op!r}")
        else:
            clauses.append(f"{column} = ?")
            params.append(value)

    return " AND ".join(clauses) if clauses else "1 = 1", params
