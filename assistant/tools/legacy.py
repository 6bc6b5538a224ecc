"""Generic job/candidate lookups kept from the first assistant release."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from assistant.services.access_control import is_global_admin
from assistant.services.actors import Actor, CompanyUser, Hrm8User
from assistant.services.database import db_connection, fetchall, fetchone
from assistant.services.errors import ToolExecutionError
from assistant.tools.common import (
    OptionalId,
    TextQuery,
    ToolArgs,
    camelize,
    candidate_lookup,
    count_by,
    find_job,
    full_name,
    job_lookup,
    scoped_job_filter,
    select_one,
    select_rows,
)


class JobStatusArgs(ToolArgs):
    job_query: TextQuery = Field(description="Job ID, job code, or a recognizable part of the job title")


class CandidateStatusArgs(ToolArgs):
    candidate_query: TextQuery = Field(description="Candidate ID, email, or full name")
    job_query: Optional[TextQuery] = Field(
        default=None, description="Optional job ID/job code/title to narrow application context"
    )


class JobPipelineSummaryArgs(ToolArgs):
    job_query: TextQuery = Field(description="Job ID, job code, or job title")


class CompanyHiringOverviewArgs(ToolArgs):
    company_id: OptionalId = Field(
        default=None, description="Optional company ID. Only HRM8 global admin can query arbitrary company IDs."
    )


async def get_job_status(params: JobStatusArgs, actor: Actor) -> dict[str, Any]:
    async with db_connection() as conn:
        job = await find_job(conn, actor, params.job_query)
        if job is None:
            return {"found": False, "reason": "No matching job found in your data scope."}
        counts = await fetchone(
            conn,
            """
            SELECT COUNT(*) AS applicants,
                   COALESCE(SUM(CASE WHEN status = 'HIRED' THEN 1 ELSE 0 END), 0) AS hired
            FROM applications WHERE job_id = ?
            """,
            (job["id"],),
        )

    return {
        "found": True,
        "job": {
            "id": job["id"],
            "jobCode": job["job_code"],
            "title": job["title"],
            "status": job["status"],
            "companyId": job["company_id"],
            "regionId": job["region_id"],
            "location": job["location"],
            "department": job["department"],
            "assignedConsultantId": job["assigned_consultant_id"],
            "applicantsCount": counts["applicants"],
            "hiredCount": counts["hired"],
            "vacancies": job["number_of_vacancies"],
            "closeDate": job["close_date"],
            "updatedAt": job["updated_at"],
        },
    }


async def get_candidate_status(params: CandidateStatusArgs, actor: Actor) -> dict[str, Any]:
    async with db_connection() as conn:
        candidate = await select_one(
            conn,
            "SELECT c.* FROM candidates c",
            candidate_lookup(params.candidate_query),
            alias="c",
            suffix="ORDER BY c.updated_at DESC LIMIT 1",
        )
        if candidate is None:
            return {"found": False, "reason": "No candidate found."}

        filters: dict[str, Any] = {"a.candidate_id": candidate["id"]}
        if params.job_query:
            filters["AND"] = [job_lookup(params.job_query)]
        applications = await select_rows(
            conn,
            """
            SELECT a.id, a.job_id, a.status, a.stage, a.score, a.updated_at,
                   j.title AS job_title, j.job_code
            FROM applications a JOIN jobs j ON j.id = a.job_id
            """,
            scoped_job_filter(actor, filters),
            alias="j",
            suffix="ORDER BY a.updated_at DESC LIMIT 5",
        )

    if not applications:
        if not isinstance(actor, Hrm8User):
            return {"found": False, "reason": "Candidate exists but is not in your company scope."}
        if not is_global_admin(actor):
            return {"found": False, "reason": "Candidate exists but has no data in your assigned regions."}

    latest = applications[0] if applications else None
    return {
        "found": True,
        "candidate": {
            "id": candidate["id"],
            "fullName": full_name(candidate["first_name"], candidate["last_name"]),
            "email": candidate["email"],
            "status": candidate["status"],
            "updatedAt": candidate["updated_at"],
        },
        "latestApplication": camelize(latest),
        "applicationsCountInScope": len(applications),
    }


async def get_job_pipeline_summary(params: JobPipelineSummaryArgs, actor: Actor) -> dict[str, Any]:
    async with db_connection() as conn:
        job = await find_job(conn, actor, params.job_query)
        if job is None:
            return {"found": False, "reason": "No matching job found in your data scope."}

        by_stage = await count_by(conn, "applications", "stage", {"job_id": job["id"]}, "a")
        by_status = await count_by(conn, "applications", "status", {"job_id": job["id"]}, "a")
        latest = await fetchall(
            conn,
            """
            SELECT a.id AS application_id, a.stage, a.status, a.updated_at,
                   c.first_name, c.last_name, c.email AS candidate_email
            FROM applications a JOIN candidates c ON c.id = a.candidate_id
            WHERE a.job_id = ?
            ORDER BY a.updated_at DESC LIMIT 5
            """,
            (job["id"],),
        )

    return {
        "found": True,
        "job": {"id": job["id"], "title": job["title"], "jobCode": job["job_code"]},
        "pipeline": {
            "byStage": [{"stage": row["key"], "count": row["count"]} for row in by_stage],
            "byStatus": [{"status": row["key"], "count": row["count"]} for row in by_status],
            "latestUpdates": [
                {
                    "applicationId": row["application_id"],
                    "candidateName": full_name(row["first_name"], row["last_name"]),
                    "candidateEmail": row["candidate_email"],
                    "stage": row["stage"],
                    "status": row["status"],
                    "updatedAt": row["updated_at"],
                }
                for row in latest
            ],
        },
    }


async def get_company_hiring_overview(params: CompanyHiringOverviewArgs, actor: Actor) -> dict[str, Any]:
    if isinstance(actor, CompanyUser):
        company_id = actor.company_id
    elif is_global_admin(actor) and params.company_id:
        company_id = params.company_id
    elif is_global_admin(actor):
        raise ToolExecutionError("Global admin must provide companyId for company overview.")
    else:
        raise ToolExecutionError(
            "This tool is not available for regional licensee scope without a company context."
        )

    async with db_connection() as conn:
        company = await fetchone(
            conn,
            "SELECT id, name, domain, verification_status, created_at FROM companies WHERE id = ?",
            (company_id,),
        )
        if company is None:
            return {"found": False, "reason": "Company not found."}

        jobs_by_status = await count_by(conn, "jobs", "status", {"company_id": company_id}, "j")
        apps_by_status = await fetchall(
            conn,
            """
            SELECT a.status AS key, COUNT(*) AS count
            FROM applications a JOIN jobs j ON j.id = a.job_id
            WHERE j.company_id = ?
            GROUP BY a.status ORDER BY count DESC
            """,
            (company_id,),
        )
        latest_jobs = await fetchall(
            conn,
            """
            SELECT j.id, j.title, j.job_code, j.status, j.updated_at,
                   (SELECT COUNT(*) FROM applications a WHERE a.job_id = j.id) AS applications
            FROM jobs j WHERE j.company_id = ?
            ORDER BY j.updated_at DESC LIMIT 5
            """,
            (company_id,),
        )

    return {
        "found": True,
        "company": camelize(company),
        "jobsByStatus": [{"status": row["key"], "count": row["count"]} for row in jobs_by_status],
        "applicationsByStatus": [{"status": row["key"], "count": row["count"]} for row in apps_by_status],
        "latestJobs": [camelize(row) for row in latest_jobs],
    }
