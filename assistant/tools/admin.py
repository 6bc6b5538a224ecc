"""Admin search and monitoring tools."""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any, Literal, Optional

from pydantic import Field

from assistant.services.access_control import (
    apply_job_scope,
    apply_region_scope,
    ensure_non_empty_region_scope,
    is_global_admin,
)
from assistant.services.actors import Actor, CompanyUser, Consultant
from assistant.services.database import db_connection, fetchall
from assistant.tools.common import (
    OptionalId,
    TextQuery,
    ToolArgs,
    full_name,
    iso,
    scoped_job_filter,
    select_one,
    select_rows,
    utc_now,
)

ADMINS_ONLY = {"found": False, "reason": "This tool is only available for administrators."}

RevenuePeriod = Literal["TODAY", "THIS_WEEK", "THIS_MONTH", "THIS_QUARTER", "THIS_YEAR", "ALL_TIME"]
LeaderboardPeriod = Literal["THIS_MONTH", "THIS_QUARTER", "THIS_YEAR", "ALL_TIME"]


class SearchConsultantsArgs(ToolArgs):
    query: TextQuery = Field(description="Consultant name, email, or partial match. Required field.")
    region_id: OptionalId = Field(
        default=None,
        description="Optional region ID to filter results. Leave empty or omit to search all accessible regions.",
    )
    limit: int = Field(default=20, ge=1, le=50)


class SearchCandidatesArgs(ToolArgs):
    query: TextQuery = Field(description="Candidate name or email")
    limit: int = Field(default=20, ge=1, le=50)


class RecentAuditLogsArgs(ToolArgs):
    limit: int = Field(default=5, ge=1, le=50)
    entity_type: Literal["USER", "JOB", "APPLICATION", "COMPANY", "CONSULTANT", "AI_TOOL_EXECUTION", "ALL"] = "ALL"
    action_type: Literal["CREATE", "UPDATE", "DELETE", "LOGIN", "EXECUTE", "ALL"] = "ALL"


class RevenueAnalyticsArgs(ToolArgs):
    time_range: RevenuePeriod = "THIS_MONTH"
    region_id: OptionalId = Field(
        default=None, description="Optional region ID to filter results. Leave empty to use all regions."
    )
    include_company_breakdown: bool = True
    include_sharing_insights: bool = Field(default=True, description="Include HRM8 vs Licensee share details")


class LicenseeLeaderboardArgs(ToolArgs):
    time_range: LeaderboardPeriod = "THIS_MONTH"
    metric: Literal["TOTAL_REVENUE", "HRM8_SHARE", "PLACEMENTS"] = "TOTAL_REVENUE"
    limit: int = Field(default=10, ge=1, le=20)


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """First instant of a named reporting period, or None for ALL_TIME."""
    now = now or utc_now()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "TODAY":
        return midnight
    if period == "THIS_WEEK":
        return midnight - timedelta(days=(now.weekday() + 1) % 7)
    if period == "THIS_MONTH":
        return midnight.replace(day=1)
    if period == "THIS_QUARTER":
        return midnight.replace(month=((now.month - 1) // 3) * 3 + 1, day=1)
    if period == "THIS_YEAR":
        return midnight.replace(month=1, day=1)
    return None


def _region_filter(actor: Actor, region_id: Optional[str]) -> Optional[dict[str, Any]]:
    """Region constraint for an admin query, or None when the region is outside scope.

    Raises ScopeConfigurationError for an admin with no assigned regions.
    """
    if not region_id:
        return apply_region_scope(actor)
    scope = ensure_non_empty_region_scope(actor)
    if scope and region_id not in scope:
        return None
    return {"region_id": region_id}


async def search_consultants(params: SearchConsultantsArgs, actor: Actor) -> dict[str, Any]:
    if isinstance(actor, CompanyUser):
        return {"found": False, "reason": "This tool is only available for HRM8 users."}

    region = _region_filter(actor, params.region_id)
    if region is None:
        return {"found": False, "reason": "Region not in your scope."}

    filters = {
        **region,
        "OR": [
            {"email": {"contains": params.query}},
            {"first_name": {"contains": params.query}},
            {"last_name": {"contains": params.query}},
        ],
    }
    async with db_connection() as conn:
        rows = await select_rows(
            conn,
            """
            SELECT c.id, c.first_name, c.last_name, c.email, c.role, c.status, r.name AS region_name
            FROM consultants c LEFT JOIN regions r ON r.id = c.region_id
            """,
            filters,
            alias="c",
            suffix=f"ORDER BY c.first_name, c.last_name LIMIT {int(params.limit)}",
        )

    return {
        "found": True,
        "total": len(rows),
        "consultants": [
            {
                "id": row["id"],
                "name": full_name(row["first_name"], row["last_name"]),
                "email": row["email"],
                "role": row["role"],
                "status": row["status"],
                "regionName": row["region_name"],
            }
            for row in rows
        ],
    }


def _candidate_application_scope(actor: Actor) -> dict[str, Any]:
    if isinstance(actor, Consultant):
        return apply_job_scope(actor)
    return scoped_job_filter(actor)


async def search_candidates_by_name(params: SearchCandidatesArgs, actor: Actor) -> dict[str, Any]:
    scope = _candidate_application_scope(actor)
    name_match = {
        "OR": [
            {"c.email": {"contains": params.query}},
            {"c.first_name": {"contains": params.query}},
            {"c.last_name": {"contains": params.query}},
        ]
    }

    async with db_connection() as conn:
        if scope:
            candidates = await select_rows(
                conn,
                """
                SELECT DISTINCT c.id, c.first_name, c.last_name, c.email, c.phone, c.status
                FROM candidates c
                JOIN applications a ON a.candidate_id = c.id
                JOIN jobs j ON j.id = a.job_id
                """,
                {**scope, **name_match},
                alias="j",
                suffix=f"ORDER BY c.first_name, c.last_name LIMIT {int(params.limit)}",
            )
        else:
            candidates = await select_rows(
                conn,
                "SELECT c.id, c.first_name, c.last_name, c.email, c.phone, c.status FROM candidates c",
                name_match,
                suffix=f"ORDER BY c.first_name, c.last_name LIMIT {int(params.limit)}",
            )

        results = []
        for candidate in candidates:
            applications = await select_rows(
                conn,
                """
                SELECT a.status, a.stage, a.updated_at, j.title, j.job_code, co.name AS company_name
                FROM applications a
                JOIN jobs j ON j.id = a.job_id
                LEFT JOIN companies co ON co.id = j.company_id
                """,
                {**scope, "a.candidate_id": candidate["id"]},
                alias="j",
                suffix="ORDER BY a.updated_at DESC LIMIT 3",
            )
            results.append(
                {
                    "id": candidate["id"],
                    "name": full_name(candidate["first_name"], candidate["last_name"]),
                    "email": candidate["email"],
                    "phone": candidate["phone"],
                    "status": candidate["status"],
                    "recentApplications": [
                        {
                            "jobTitle": app["title"],
                            "jobCode": app["job_code"],
                            "companyName": app["company_name"],
                            "status": app["status"],
                            "stage": app["stage"],
                            "updatedAt": app["updated_at"],
                        }
                        for app in applications
                    ],
                }
            )

    return {"found": True, "total": len(results), "candidates": results}


def _decode_changes(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


async def get_recent_audit_logs(params: RecentAuditLogsArgs, actor: Actor) -> dict[str, Any]:
    if isinstance(actor, (CompanyUser, Consultant)):
        return ADMINS_ONLY

    filters: dict[str, Any] = {}
    if params.entity_type != "ALL":
        filters["entity_type"] = params.entity_type
    if params.action_type != "ALL":
        filters["action"] = params.action_type

    async with db_connection() as conn:
        rows = await select_rows(
            conn,
            "SELECT * FROM audit_logs",
            filters,
            suffix=f"ORDER BY performed_at DESC, id DESC LIMIT {int(params.limit)}",
        )

    return {
        "found": True,
        "total": len(rows),
        "logs": [
            {
                "id": row["id"],
                "entityType": row["entity_type"],
                "entityId": row["entity_id"],
                "action": row["action"],
                "description": row["description"],
                "performedBy": row["performed_by_email"] or row["performed_by"] or "System",
                "performedAt": row["performed_at"],
                "changes": _decode_changes(row["changes"]),
            }
            for row in rows
        ],
    }


def _commission_filter(region: dict[str, Any], start: Optional[datetime]) -> dict[str, Any]:
    filters = {f"cm.{key}": value for key, value in region.items()}
    if start is not None:
        filters["cm.created_at"] = {"gte": iso(start)}
    return filters


async def get_revenue_analytics(params: RevenueAnalyticsArgs, actor: Actor) -> dict[str, Any]:
    if isinstance(actor, (CompanyUser, Consultant)):
        return ADMINS_ONLY

    region = _region_filter(actor, params.region_id)
    if region is None:
        return {"found": False, "reason": "Region not in your scope."}
    filters = _commission_filter(region, period_start(params.time_range))

    async with db_connection() as conn:
        totals = await select_one(
            conn,
            "SELECT COALESCE(SUM(cm.amount), 0) AS total, COUNT(cm.id) AS count FROM commissions cm",
            filters,
        )
        by_status = await select_rows(
            conn,
            "SELECT cm.status, COALESCE(SUM(cm.amount), 0) AS amount, COUNT(cm.id) AS count FROM commissions cm",
            filters,
            suffix="GROUP BY cm.status ORDER BY amount DESC",
        )

        result: dict[str, Any] = {
            "found": True,
            "timeRange": params.time_range,
            "summary": {"totalRevenue": totals["total"], "totalCommissions": totals["count"]},
            "commissionsByStatus": [
                {"status": row["status"], "amount": row["amount"], "count": row["count"]} for row in by_status
            ],
        }

        if params.include_company_breakdown:
            companies = await select_rows(
                conn,
                """
                SELECT co.id AS company_id, co.name AS company_name,
                       COALESCE(SUM(cm.amount), 0) AS total, COUNT(cm.id) AS count
                FROM commissions cm
                JOIN jobs j ON j.id = cm.job_id
                JOIN companies co ON co.id = j.company_id
                """,
                filters,
                suffix="GROUP BY co.id, co.name ORDER BY total DESC LIMIT 15",
            )
            result["companyBreakdown"] = [
                {
                    "companyId": row["company_id"],
                    "companyName": row["company_name"],
                    "totalRevenue": row["total"],
                    "commissionCount": row["count"],
                }
                for row in companies
            ]

        if params.include_sharing_insights and totals["total"]:
            shares = await select_one(
                conn,
                """
                SELECT COALESCE(SUM(cm.amount * COALESCE(l.revenue_share, 0.8)), 0) AS licensee_share
                FROM commissions cm
                LEFT JOIN regions r ON r.id = cm.region_id
                LEFT JOIN licensees l ON l.id = r.licensee_id
                """,
                filters,
            )
            result["revenueSharing"] = {
                "totalRecognizedRevenue": totals["total"],
                "licenseeShare": round(shares["licensee_share"], 2),
                "hrm8Share": round(totals["total"] - shares["licensee_share"], 2),
            }

    return result


async def get_licensee_leaderboard(params: LicenseeLeaderboardArgs, actor: Actor) -> dict[str, Any]:
    if not is_global_admin(actor):
        return {"found": False, "reason": "This tool is restricted to Global Administrators."}

    start = period_start(params.time_range)
    since = iso(start) if start is not None else ""

    async with db_connection() as conn:
        rows = await fetchall(
            conn,
            """
            SELECT r.id AS region_id, r.name AS region_name, l.name AS licensee_name,
                   COALESCE(l.revenue_share, 0.8) AS share,
                   COALESCE(SUM(cm.amount), 0) AS total, COUNT(cm.id) AS placements
            FROM commissions cm
            JOIN regions r ON r.id = cm.region_id
            LEFT JOIN licensees l ON l.id = r.licensee_id
            WHERE cm.created_at >= ?
            GROUP BY r.id, r.name, l.name, l.revenue_share
            """,
            (since,),
        )

    leaderboard = []
    for row in rows:
        licensee_share = round(row["total"] * row["share"], 2)
        leaderboard.append(
            {
                "regionId": row["region_id"],
                "regionName": row["region_name"] or "Unknown Region",
                "licenseeName": row["licensee_name"] or "Unassigned",
                "totalRevenue": row["total"],
                "licenseeShare": licensee_share,
                "hrm8Share": round(row["total"] - licensee_share, 2),
                "placementCount": row["placements"],
            }
        )

    sort_key = {
        "TOTAL_REVENUE": "totalRevenue",
        "HRM8_SHARE": "hrm8Share",
        "PLACEMENTS": "placementCount",
    }[params.metric]
    leaderboard.sort(key=lambda entry: entry[sort_key], reverse=True)

    return {
        "found": bool(leaderboard),
        "timeRange": params.time_range,
        "metric": params.metric,
        "leaderboard": leaderboard[: params.limit],
    }
