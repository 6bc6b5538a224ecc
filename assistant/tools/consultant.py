"""Consultant performance, commission and "my ..." personal tools."""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from assistant.services.access_control import apply_job_scope, enforce_consultant_self_scope, is_consultant
from assistant.services.actors import Actor
from assistant.services.database import build_where, db_connection, fetchall, fetchone, fetchvalue
from assistant.tools.common import (
    ACTIVE_APPLICATION_STATUSES,
    TextQuery,
    TimeRange,
    ToolArgs,
    days_from_now,
    full_name,
    iso,
    select_rows,
    time_filter,
    utc_now,
)

CONSULTANT_ONLY = {"found": False, "reason": "This tool is only available for consultants."}


class ConsultantPerformanceArgs(ToolArgs):
    consultant_query: Optional[TextQuery] = Field(default=None, description="Consultant ID or email (admins only)")
    time_range: Optional[TimeRange] = None


class ConsultantCommissionArgs(ToolArgs):
    consultant_query: Optional[TextQuery] = Field(default=None, description="Consultant ID or email (admins only)")
    status: Literal["ALL", "PENDING", "APPROVED", "PAID", "WITHDRAWN"] = "ALL"


class EmptyArgs(ToolArgs):
    pass


class MyCompaniesArgs(ToolArgs):
    status: Literal["ACTIVE", "ALL"] = "ACTIVE"


class MyCandidatesArgs(ToolArgs):
    status: Literal["ALL", "NEW", "SCREENING", "INTERVIEW", "OFFER", "HIRED", "REJECTED"] = "ALL"
    limit: int = Field(default=50, ge=1, le=100)


def _with_time(filters: dict[str, Any], column: str, time_range: Optional[TimeRange]) -> dict[str, Any]:
    bounds = time_filter(time_range)
    if bounds:
        return {**filters, column: bounds}
    return filters


async def get_consultant_performance(params: ConsultantPerformanceArgs, actor: Actor) -> dict[str, Any]:
    consultant_id = await enforce_consultant_self_scope(actor, params.consultant_query)

    async with db_connection() as conn:
        consultant = await fetchone(
            conn,
            """
            SELECT c.id, c.first_name, c.last_name, c.email, c.status, r.name AS region_name
            FROM consultants c LEFT JOIN regions r ON r.id = c.region_id
            WHERE c.id = ?
            """,
            (consultant_id,),
        )
        if consultant is None:
            return {"found": False, "reason": "Consultant not found."}

        jobs = await select_rows(
            conn,
            """
            SELECT j.id, j.title, j.job_code, j.status, j.created_at, co.name AS company_name
            FROM jobs j LEFT JOIN companies co ON co.id = j.company_id
            """,
            _with_time({"assigned_consultant_id": consultant_id}, "created_at", params.time_range),
            alias="j",
            suffix="ORDER BY j.created_at DESC LIMIT 20",
        )
        placements = await select_rows(
            conn,
            "SELECT a.status AS key, COUNT(*) AS count FROM applications a JOIN jobs j ON j.id = a.job_id",
            _with_time({"j.assigned_consultant_id": consultant_id}, "a.updated_at", params.time_range),
            alias="a",
            suffix="GROUP BY a.status ORDER BY count DESC",
        )
        commissions = await select_rows(
            conn,
            "SELECT COALESCE(SUM(amount), 0) AS total, COUNT(id) AS count FROM commissions",
            _with_time({"consultant_id": consultant_id}, "created_at", params.time_range),
        )
        where, where_params = build_where(
            _with_time({"created_by": consultant_id}, "created_at", params.time_range)
        )
        activity_count = await fetchvalue(conn, f"SELECT COUNT(*) FROM activities WHERE {where}", tuple(where_params))

    return {
        "found": True,
        "consultant": {
            "id": consultant["id"],
            "name": full_name(consultant["first_name"], consultant["last_name"]),
            "email": consultant["email"],
            "regionName": consultant["region_name"],
            "status": consultant["status"],
        },
        "assignments": {
            "total": len(jobs),
            "jobs": [
                {
                    "jobId": job["id"],
                    "jobTitle": job["title"],
                    "jobCode": job["job_code"],
                    "companyName": job["company_name"],
                    "status": job["status"],
                    "assignedAt": job["created_at"],
                }
                for job in jobs
            ],
        },
        "placements": {
            "total": sum(row["count"] for row in placements),
            "byStatus": [{"status": row["key"], "count": row["count"]} for row in placements],
        },
        "commissions": {
            "consultantId": consultant_id,
            "commissionAmount": commissions[0]["total"],
            "count": commissions[0]["count"],
        },
        "activityCount": activity_count,
    }


async def get_consultant_commission(params: ConsultantCommissionArgs, actor: Actor) -> dict[str, Any]:
    consultant_id = await enforce_consultant_self_scope(actor, params.consultant_query)

    filters: dict[str, Any] = {"consultant_id": consultant_id}
    if params.status != "ALL":
        filters["status"] = params.status

    async with db_connection() as conn:
        commissions = await select_rows(
            conn,
            "SELECT id, consultant_id, amount, status, type, job_id, created_at, paid_at FROM commissions",
            filters,
            suffix="ORDER BY created_at DESC LIMIT 50",
        )
        withdrawals = await fetchall(
            conn,
            """
            SELECT id, consultant_id, amount, status, created_at, processed_at
            FROM commission_withdrawals WHERE consultant_id = ?
            ORDER BY created_at DESC LIMIT 20
            """,
            (consultant_id,),
        )
        summary = await fetchall(
            conn,
            """
            SELECT status, COALESCE(SUM(amount), 0) AS amount, COUNT(id) AS count
            FROM commissions WHERE consultant_id = ?
            GROUP BY status ORDER BY status
            """,
            (consultant_id,),
        )

    return {
        "found": True,
        "consultantId": consultant_id,
        "commissions": [
            {
                "id": row["id"],
                "consultantId": row["consultant_id"],
                "amount": row["amount"],
                "status": row["status"],
                "type": row["type"],
                "jobId": row["job_id"],
                "createdAt": row["created_at"],
                "paidAt": row["paid_at"],
            }
            for row in commissions
        ],
        "withdrawals": [
            {
                "id": row["id"],
                "consultantId": row["consultant_id"],
                "amount": row["amount"],
                "status": row["status"],
                "createdAt": row["created_at"],
                "processedAt": row["processed_at"],
            }
            for row in withdrawals
        ],
        "summary": {
            "byStatus": [
                {"status": row["status"], "amount": row["amount"], "count": row["count"]} for row in summary
            ],
            "totalEarned": sum(row["amount"] for row in summary),
        },
    }


async def get_my_daily_briefing(params: EmptyArgs, actor: Actor) -> dict[str, Any]:
    if not is_consultant(actor):
        return CONSULTANT_ONLY

    now = iso(utc_now())
    week_ahead = days_from_now(7)
    month_ago = days_from_now(-30)

    async with db_connection() as conn:
        jobs = await select_rows(
            conn,
            """
            SELECT j.id, j.title, j.job_code, co.name AS company_name,
                   (SELECT COUNT(*) FROM applications a WHERE a.job_id = j.id) AS applications_count
            FROM jobs j LEFT JOIN companies co ON co.id = j.company_id
            """,
            apply_job_scope(actor, {"status": "OPEN"}),
            alias="j",
            suffix="ORDER BY j.updated_at DESC LIMIT 10",
        )
        interviews = await select_rows(
            conn,
            """
            SELECT i.scheduled_date, i.interview_type, c.first_name, c.last_name, j.title AS job_title
            FROM interviews i
            JOIN applications a ON a.id = i.application_id
            JOIN candidates c ON c.id = a.candidate_id
            JOIN jobs j ON j.id = a.job_id
            """,
            apply_job_scope(
                actor,
                {
                    "i.scheduled_date": {"gte": now, "lte": week_ahead},
                    "i.status": {"in": ["SCHEDULED", "IN_PROGRESS"]},
                },
            ),
            alias="j",
            suffix="ORDER BY i.scheduled_date ASC LIMIT 10",
        )
        pending = await select_rows(
            conn,
            """
            SELECT a.status, a.updated_at, c.first_name, c.last_name, j.title AS job_title
            FROM applications a
            JOIN candidates c ON c.id = a.candidate_id
            JOIN jobs j ON j.id = a.job_id
            """,
            apply_job_scope(actor, {"a.status": {"in": ["NEW", "SCREENING"]}}),
            alias="j",
            suffix="ORDER BY a.updated_at ASC LIMIT 10",
        )
        commissions = await fetchone(
            conn,
            """
            SELECT COALESCE(SUM(amount), 0) AS total, COUNT(id) AS count
            FROM commissions WHERE consultant_id = ? AND created_at >= ?
            """,
            (actor.user_id, month_ago),
        )

    return {
        "found": True,
        "date": now,
        "summary": {
            "assignedJobsCount": len(jobs),
            "upcomingInterviewsCount": len(interviews),
            "pendingApplicationsCount": len(pending),
            "monthlyCommissionsAmount": commissions["total"],
            "monthlyCommissionsCount": commissions["count"],
        },
        "assignedJobs": [
            {
                "id": job["id"],
                "title": job["title"],
                "jobCode": job["job_code"],
                "companyName": job["company_name"],
                "applicationsCount": job["applications_count"],
            }
            for job in jobs
        ],
        "upcomingInterviews": [
            {
                "candidateName": full_name(row["first_name"], row["last_name"]),
                "jobTitle": row["job_title"],
                "scheduledAt": row["scheduled_date"],
                "type": row["interview_type"],
            }
            for row in interviews
        ],
        "pendingApplications": [
            {
                "candidateName": full_name(row["first_name"], row["last_name"]),
                "jobTitle": row["job_title"],
                "status": row["status"],
                "updatedAt": row["updated_at"],
            }
            for row in pending
        ],
    }


async def get_my_companies(params: MyCompaniesArgs, actor: Actor) -> dict[str, Any]:
    if not is_consultant(actor):
        return CONSULTANT_ONLY

    filters = apply_job_scope(actor, {"status": "OPEN"} if params.status == "ACTIVE" else {})
    async with db_connection() as conn:
        companies = await select_rows(
            conn,
            "SELECT DISTINCT co.id, co.name, co.domain FROM jobs j JOIN companies co ON co.id = j.company_id",
            filters,
            alias="j",
            suffix="ORDER BY co.name",
        )

        results = []
        for company in companies:
            stats = await fetchone(
                conn,
                """
                SELECT
                    (SELECT COUNT(*) FROM jobs j
                     WHERE j.company_id = :company AND j.assigned_consultant_id = :consultant
                       AND j.status = 'OPEN') AS active_jobs,
                    (SELECT COUNT(*) FROM applications a JOIN jobs j ON j.id = a.job_id
                     WHERE j.company_id = :company AND j.assigned_consultant_id = :consultant) AS candidates,
                    (SELECT COUNT(*) FROM applications a JOIN jobs j ON j.id = a.job_id
                     WHERE j.company_id = :company AND j.assigned_consultant_id = :consultant
                       AND a.status = 'HIRED') AS placements
                """,
                {"company": company["id"], "consultant": actor.user_id},
            )
            results.append(
                {
                    "companyId": company["id"],
                    "companyName": company["name"],
                    "domain": company["domain"],
                    "activeJobs": stats["active_jobs"],
                    "totalCandidates": stats["candidates"],
                    "placements": stats["placements"],
                }
            )

    return {"found": True, "total": len(results), "companies": results}


async def get_my_candidates(params: MyCandidatesArgs, actor: Actor) -> dict[str, Any]:
    if not is_consultant(actor):
        return CONSULTANT_ONLY

    filters: dict[str, Any] = {}
    if params.status != "ALL":
        filters["a.status"] = params.status

    async with db_connection() as conn:
        rows = await select_rows(
            conn,
            """
            SELECT a.id AS application_id, a.status, a.stage, a.score, a.created_at, a.updated_at,
                   c.id AS candidate_id, c.first_name, c.last_name, c.email, c.phone,
                   j.title AS job_title, j.job_code, co.name AS company_name
            FROM applications a
            JOIN candidates c ON c.id = a.candidate_id
            JOIN jobs j ON j.id = a.job_id
            LEFT JOIN companies co ON co.id = j.company_id
            """,
            apply_job_scope(actor, filters),
            alias="j",
            suffix=f"ORDER BY a.updated_at DESC LIMIT {int(params.limit)}",
        )

    return {
        "found": True,
        "total": len(rows),
        "candidates": [
            {
                "candidateId": row["candidate_id"],
                "candidateName": full_name(row["first_name"], row["last_name"]),
                "email": row["email"],
                "phone": row["phone"],
                "applicationId": row["application_id"],
                "jobTitle": row["job_title"],
                "jobCode": row["job_code"],
                "companyName": row["company_name"],
                "status": row["status"],
                "stage": row["stage"],
                "score": row["score"],
                "appliedDate": row["created_at"],
                "lastUpdated": row["updated_at"],
            }
            for row in rows
        ],
    }


async def get_my_quick_stats(params: EmptyArgs, actor: Actor) -> dict[str, Any]:
    if not is_consultant(actor):
        return CONSULTANT_ONLY

    now = iso(utc_now())
    statuses = ", ".join(f"'{status}'" for status in ACTIVE_APPLICATION_STATUSES)
    async with db_connection() as conn:
        stats = await fetchone(
            conn,
            f"""
            SELECT
                (SELECT COUNT(*) FROM jobs j
                 WHERE j.assigned_consultant_id = :me AND j.status = 'OPEN') AS active_jobs,
                (SELECT COUNT(*) FROM applications a JOIN jobs j ON j.id = a.job_id
                 WHERE j.assigned_consultant_id = :me AND a.status IN ({statuses})) AS pipeline,
                (SELECT COUNT(*) FROM interviews i
                 JOIN applications a ON a.id = i.application_id
                 JOIN jobs j ON j.id = a.job_id
                 WHERE j.assigned_consultant_id = :me
                   AND i.scheduled_date >= :now AND i.scheduled_date <= :week
                   AND i.status IN ('SCHEDULED', 'IN_PROGRESS')) AS interviews,
                (SELECT COALESCE(SUM(amount), 0) FROM commissions
                 WHERE consultant_id = :me AND status = 'PENDING') AS pending_amount,
                (SELECT COUNT(*) FROM commissions
                 WHERE consultant_id = :me AND status = 'PENDING') AS pending_count,
                (SELECT COUNT(*) FROM applications a JOIN jobs j ON j.id = a.job_id
                 WHERE j.assigned_consultant_id = :me AND a.status = 'HIRED'
                   AND a.updated_at >= :month_ago) AS placements
            """,
            {"me": actor.user_id, "now": now, "week": days_from_now(7), "month_ago": days_from_now(-30)},
        )

    return {
        "found": True,
        "summary": {
            "activeJobs": stats["active_jobs"],
            "totalCandidatesInPipeline": stats["pipeline"],
            "interviewsThisWeek": stats["interviews"],
            "pendingCommissionsAmount": stats["pending_amount"],
            "pendingCommissionsCount": stats["pending_count"],
            "recentPlacements": stats["placements"],
        },
    }
