"""Composite tools that gather everything about one candidate or one job in a single call."""
from __future__ import annotations

from typing import Any

from pydantic import Field

from assistant.services.access_control import apply_job_scope
from assistant.services.actors import Actor
from assistant.services.database import build_where, db_connection, fetchall, fetchone
from assistant.tools.common import (
    TextQuery,
    ToolArgs,
    camelize,
    candidate_lookup,
    count_by,
    full_name,
    iso,
    scoped_job_filter,
    search_tokens,
    select_one,
    select_rows,
    utc_now,
)


class CandidateOverviewArgs(ToolArgs):
    candidate_query: TextQuery = Field(description="Candidate ID, email, or full name")
    include_interviews: bool = True
    include_offers: bool = True


class JobDashboardArgs(ToolArgs):
    job_query: TextQuery = Field(description="Job ID, job code, job title, or company name/domain")
    include_analytics: bool = True


def _application_scope(actor: Actor) -> dict[str, Any]:
    return scoped_job_filter(actor, apply_job_scope(actor))


def _job_or_company_lookup(query: str) -> dict[str, Any]:
    options: list[dict[str, Any]] = [
        {"id": query},
        {"job_code": {"ieq": query}},
        {"title": {"contains": query}},
        {"co.name": {"contains": query}},
        {"co.domain": {"contains": query}},
    ]
    tokens = search_tokens(query)
    if tokens:
        options.append(
            {
                "AND": [
                    {
                        "OR": [
                            {"title": {"contains": token}},
                            {"job_code": {"contains": token}},
                            {"co.name": {"contains": token}},
                            {"co.domain": {"contains": token}},
                        ]
                    }
                    for token in tokens
                ]
            }
        )
    return {"OR": options}


async def _rows_for_applications(conn, select_sql: str, application_ids: list[str], suffix: str) -> list[dict[str, Any]]:
    if not application_ids:
        return []
    where, params = build_where({"application_id": {"in": application_ids}})
    return await fetchall(conn, f"{select_sql} WHERE {where} {suffix}", tuple(params))


async def get_candidate_complete_overview(params: CandidateOverviewArgs, actor: Actor) -> dict[str, Any]:
    scope = _application_scope(actor)

    async with db_connection() as conn:
        candidate = await select_one(
            conn,
            """
            SELECT DISTINCT c.* FROM candidates c
            JOIN applications a ON a.candidate_id = c.id
            JOIN jobs j ON j.id = a.job_id
            """,
            {**scope, "AND": [candidate_lookup(params.candidate_query)]},
            alias="j",
            suffix="ORDER BY c.updated_at DESC LIMIT 1",
        )
        if candidate is None:
            return {"found": False, "reason": "Candidate not found in your access scope."}

        applications = await select_rows(
            conn,
            """
            SELECT a.id, a.job_id, a.status, a.stage, a.score, a.created_at, a.updated_at,
                   j.title AS job_title, j.job_code, co.name AS company_name
            FROM applications a
            JOIN jobs j ON j.id = a.job_id
            LEFT JOIN companies co ON co.id = j.company_id
            """,
            {**scope, "a.candidate_id": candidate["id"]},
            alias="j",
            suffix="ORDER BY a.updated_at DESC LIMIT 10",
        )
        application_ids = [app["id"] for app in applications]

        interviews: list[dict[str, Any]] = []
        if params.include_interviews:
            interviews = await _rows_for_applications(
                conn,
                "SELECT id, application_id, scheduled_date, status, interview_type, duration FROM interviews",
                application_ids,
                "ORDER BY scheduled_date DESC LIMIT 10",
            )

        offers: list[dict[str, Any]] = []
        if params.include_offers:
            offers = await _rows_for_applications(
                conn,
                "SELECT id, application_id, status, offer_amount, sent_at, expiry_date, responded_at FROM offers",
                application_ids,
                "ORDER BY sent_at DESC LIMIT 5",
            )

    return {
        "found": True,
        "candidate": {
            "id": candidate["id"],
            "fullName": full_name(candidate["first_name"], candidate["last_name"]),
            "email": candidate["email"],
            "phone": candidate["phone"],
            "status": candidate["status"],
            "updatedAt": candidate["updated_at"],
        },
        "applications": [
            {
                "id": app["id"],
                "jobId": app["job_id"],
                "jobTitle": app["job_title"],
                "jobCode": app["job_code"],
                "companyName": app["company_name"],
                "status": app["status"],
                "stage": app["stage"],
                "score": app["score"],
                "appliedDate": app["created_at"],
                "updatedAt": app["updated_at"],
            }
            for app in applications
        ],
        "interviews": [
            {
                "id": row["id"],
                "applicationId": row["application_id"],
                "scheduledDate": row["scheduled_date"],
                "status": row["status"],
                "type": row["interview_type"],
                "duration": row["duration"],
            }
            for row in interviews
        ],
        "offers": [
            {
                "id": row["id"],
                "applicationId": row["application_id"],
                "status": row["status"],
                "offerAmount": row["offer_amount"],
                "sentDate": row["sent_at"],
                "expiryDate": row["expiry_date"],
                "respondedDate": row["responded_at"],
            }
            for row in offers
        ],
        "summary": {
            "totalApplications": len(applications),
            "interviewsScheduled": len(interviews),
            "offersReceived": len(offers),
        },
    }


async def _job_analytics(conn, job_id: str) -> dict[str, Any]:
    row = await fetchone(
        conn,
        """
        SELECT COUNT(*) AS total,
               COALESCE(SUM(CASE WHEN status = 'HIRED' THEN 1 ELSE 0 END), 0) AS hired,
               COALESCE(SUM(CASE WHEN status = 'REJECTED' THEN 1 ELSE 0 END), 0) AS rejected,
               AVG(score) AS avg_score
        FROM applications WHERE job_id = ?
        """,
        (job_id,),
    )
    total = row["total"] or 0
    return {
        "totalApplications": total,
        "hiredCount": row["hired"],
        "rejectedCount": row["rejected"],
        "conversionRate": round(row["hired"] / total, 3) if total else 0.0,
        "averageScore": round(row["avg_score"], 1) if row["avg_score"] is not None else None,
    }


async def get_job_complete_dashboard(params: JobDashboardArgs, actor: Actor) -> dict[str, Any]:
    filters = scoped_job_filter(actor, apply_job_scope(actor, _job_or_company_lookup(params.job_query)))
    now = iso(utc_now())

    async with db_connection() as conn:
        job = await select_one(
            conn,
            """
            SELECT j.*, co.name AS company_name, co.domain AS company_domain,
                   (SELECT COUNT(*) FROM applications a WHERE a.job_id = j.id) AS applications_count
            FROM jobs j LEFT JOIN companies co ON co.id = j.company_id
            """,
            filters,
            alias="j",
            suffix="ORDER BY j.updated_at DESC LIMIT 1",
        )
        if job is None:
            return {"found": False, "reason": "Job not found in your access scope."}

        by_stage = await count_by(conn, "applications", "stage", {"job_id": job["id"]}, "a")
        by_status = await count_by(conn, "applications", "status", {"job_id": job["id"]}, "a")
        top_candidates = await fetchall(
            conn,
            """
            SELECT a.id AS application_id, a.status, a.stage, a.score, a.updated_at,
                   c.first_name, c.last_name, c.email
            FROM applications a JOIN candidates c ON c.id = a.candidate_id
            WHERE a.job_id = ? AND a.status IN ('SCREENING', 'INTERVIEW', 'OFFER')
            ORDER BY a.score IS NULL, a.score DESC, a.updated_at DESC LIMIT 10
            """,
            (job["id"],),
        )
        upcoming_interviews = await fetchall(
            conn,
            """
            SELECT a.candidate_id, i.scheduled_date, i.interview_type, i.status
            FROM interviews i JOIN applications a ON a.id = i.application_id
            WHERE a.job_id = ? AND i.scheduled_date >= ? AND i.status = 'SCHEDULED'
            ORDER BY i.scheduled_date ASC LIMIT 10
            """,
            (job["id"], now),
        )
        pending_offers = await fetchall(
            conn,
            """
            SELECT a.candidate_id, o.status, o.sent_at, o.expiry_date
            FROM offers o JOIN applications a ON a.id = o.application_id
            WHERE a.job_id = ? AND o.status IN ('SENT', 'UNDER_NEGOTIATION')
            ORDER BY o.sent_at DESC LIMIT 5
            """,
            (job["id"],),
        )
        analytics = await _job_analytics(conn, job["id"]) if params.include_analytics else None

    return {
        "found": True,
        "job": {
            "id": job["id"],
            "jobCode": job["job_code"],
            "title": job["title"],
            "status": job["status"],
            "companyName": job["company_name"],
            "companyDomain": job["company_domain"],
            "location": job["location"],
            "department": job["department"],
            "vacancies": job["number_of_vacancies"],
            "assignedConsultantId": job["assigned_consultant_id"],
            "salary": job["salary"],
            "postedAt": job["created_at"],
            "closeDate": job["close_date"],
            "updatedAt": job["updated_at"],
        },
        "pipeline": {
            "byStage": [{"stage": row["key"], "count": row["count"]} for row in by_stage],
            "byStatus": [{"status": row["key"], "count": row["count"]} for row in by_status],
            "totalApplications": job["applications_count"],
        },
        "topCandidates": [
            {
                "applicationId": row["application_id"],
                "candidateName": full_name(row["first_name"], row["last_name"]),
                "candidateEmail": row["email"],
                "status": row["status"],
                "stage": row["stage"],
                "score": row["score"],
                "updatedAt": row["updated_at"],
            }
            for row in top_candidates
        ],
        "upcomingInterviews": [
            {
                "candidateId": row["candidate_id"],
                "scheduledDate": row["scheduled_date"],
                "type": row["interview_type"],
                "status": row["status"],
            }
            for row in upcoming_interviews
        ],
        "pendingOffers": [camelize(row) for row in pending_offers],
        "analytics": analytics,
    }
