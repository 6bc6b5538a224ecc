from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from assistant.services.access_control import apply_company_scope, apply_region_scope
from assistant.services.actors import Actor, CompanyUser
from assistant.services.database import build_where, fetchall, fetchone

TextQuery = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=120)]
OptionalId = Annotated[Optional[str], BeforeValidator(lambda value: value or None)]

ACTIVE_APPLICATION_STATUSES = ("NEW", "SCREENING", "INTERVIEW", "OFFER")

SEARCH_STOP_WORDS = frozenset(
    {"the", "and", "for", "with", "from", "jobs", "job", "recent", "posted", "status", "show", "about", "of", "at", "in", "on"}
)


class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class TimeRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    start: Optional[datetime] = Field(default=None, alias="from")
    end: Optional[datetime] = Field(default=None, alias="to")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def days_from_now(days: int) -> str:
    return iso(utc_now() + timedelta(days=days))


def time_filter(time_range: Optional[TimeRange]) -> dict[str, str]:
    bounds: dict[str, str] = {}
    if time_range is None:
        return bounds
    if time_range.start:
        bounds["gte"] = iso(time_range.start)
    if time_range.end:
        bounds["lte"] = iso(time_range.end)
    return bounds


def camelize(row: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if row is None:
        return None
    return {to_camel(key): value for key, value in row.items()}


def full_name(first: Optional[str], last: Optional[str]) -> str:
    return f"{first or ''} {last or ''}".strip()


def search_tokens(query: str) -> list[str]:
    tokens = []
    for raw in "".join(ch if ch.isalnum() else " " for ch in query.lower()).split():
        if len(raw) >= 3 and raw not in SEARCH_STOP_WORDS:
            tokens.append(raw)
    return tokens[:6]


def job_lookup(query: str) -> dict[str, Any]:
    options: list[dict[str, Any]] = [
        {"id": query},
        {"job_code": {"ieq": query}},
        {"title": {"contains": query}},
    ]
    tokens = search_tokens(query)
    if tokens:
        options.append({"AND": [{"title": {"contains": token}} for token in tokens]})
    return {"OR": options}


def candidate_lookup(query: str, alias: str = "c") -> dict[str, Any]:
    parts = query.split()[:2] if " " in query else [query]
    name_match = {
        "AND": [
            {"OR": [{f"{alias}.first_name": {"contains": part}}, {f"{alias}.last_name": {"contains": part}}]}
            for part in parts
        ]
    }
    return {"OR": [{f"{alias}.id": query}, {f"{alias}.email": {"ieq": query}}, name_match]}


def scoped_job_filter(actor: Actor, base: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Restrict a job filter to the actor's company or regions."""
    if isinstance(actor, CompanyUser):
        return apply_company_scope(actor, base)
    return apply_region_scope(actor, base)


async def select_rows(
    conn,
    select_sql: str,
    filters: Optional[dict[str, Any]] = None,
    *,
    alias: Optional[str] = None,
    suffix: str = "",
) -> list[dict[str, Any]]:
    where, params = build_where(filters, alias)
    return await fetchall(conn, f"{select_sql} WHERE {where} {suffix}", tuple(params))


async def select_one(
    conn,
    select_sql: str,
    filters: Optional[dict[str, Any]] = None,
    *,
    alias: Optional[str] = None,
    suffix: str = "",
) -> Optional[dict[str, Any]]:
    where, params = build_where(filters, alias)
    return await fetchone(conn, f"{select_sql} WHERE {where} {suffix}", tuple(params))


async def find_job(conn, actor: Actor, query: str) -> Optional[dict[str, Any]]:
    return await select_one(
        conn,
        "SELECT j.* FROM jobs j",
        scoped_job_filter(actor, job_lookup(query)),
        alias="j",
        suffix="ORDER BY j.updated_at DESC LIMIT 1",
    )


async def count_by(conn, table: str, column: str, filters: dict[str, Any], alias: str) -> list[dict[str, Any]]:
    where, params = build_where(filters, alias)
    return await fetchall(
        conn,
        f"SELECT {alias}.{column} AS key, COUNT(*) AS count FROM {table} {alias} "
        f"WHERE {where} GROUP BY {alias}.{column} ORDER BY count DESC",
        tuple(params),
    )
