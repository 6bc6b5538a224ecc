#!/usr/bin/env python3
"""Rebuild the demo database with a small, deterministic HRM8 dataset.

Timestamps are relative to the moment of seeding so the "this week" and
"last 30 days" windows used by the tools always contain data.
"""
from __future__ import annotations

import argparse
import json
import sqlite3
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from assistant.services.config import get_settings
from assistant.services.database import init_db


def stamp(now: datetime, days: float = 0) -> str:
    return (now + timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")


LICENSEES = [("lic-1", "Pacific Talent Partners", 0.8)]

REGIONS = [
    ("r1", "Sydney Metro", "lic-1"),
    ("r2", "Melbourne", "lic-1"),
    ("r3", "Auckland", None),
]

COMPANIES = [
    ("co-1", "Acme Robotics", "acme-robotics.com", "r1", "VERIFIED", -120),
    ("co-2", "Bluebird Health", "bluebird.health", "r2", "VERIFIED", -90),
    ("co-3", "Kiwi Logistics", "kiwilogistics.co.nz", "r3", "PENDING", -30),
]

USERS = [
    ("u-1", "co-1", "Dana Whitfield", "dana@acme-robotics.com", "ADMIN"),
    ("u-2", "co-1", "Sam Porter", "sam@acme-robotics.com", "USER"),
    ("u-3", "co-2", "Lena Brooks", "lena@bluebird.health", "ADMIN"),
    ("h-1", None, "Morgan Hale", "morgan@hrm8.com", "GLOBAL_ADMIN"),
    ("h-2", None, "Riley Chen", "riley@hrm8.com", "REGIONAL_LICENSEE"),
]

CONSULTANTS = [
    ("c1", "Priya", "Shah", "priya@hrm8.com", "RECRUITER", "r1", "ACTIVE"),
    ("c2", "Tom", "Baker", "tom@hrm8.com", "RECRUITER", "r2", "ACTIVE"),
    ("c3", "Aroha", "Ngata", "aroha@hrm8.com", "SALES_AGENT", "r3", "ACTIVE"),
]

# id, code, title, status, company, region, location, department, consultant, vacancies, salary, created
JOBS = [
    ("j1", "ACME-001", "Senior Robotics Engineer", "OPEN", "co-1", "r1", "Sydney", "Engineering", "c1", 2, 160000, -45),
    ("j2", "ACME-002", "Product Designer", "OPEN", "co-1", "r1", "Sydney", "Design", "c1", 1, 120000, -60),
    ("j3", "BLUE-001", "Clinical Data Analyst", "OPEN", "co-2", "r2", "Melbourne", "Data", "c2", 1, 110000, -20),
    ("j4", "KIWI-001", "Warehouse Lead", "CLOSED", "co-3", "r3", "Auckland", "Operations", "c3", 1, 90000, -80),
]

CANDIDATES = [
    ("cand-1", "Alice", "Nguyen", "alice.nguyen@example.com", "+61 400 000 001"),
    ("cand-2", "Ben", "Carter", "ben.carter@example.com", "+61 400 000 002"),
    ("cand-3", "Chloe", "Martin", "chloe.martin@example.com", "+61 400 000 003"),
    ("cand-4", "Daniel", "Kim", "daniel.kim@example.com", None),
    ("cand-5", "Emma", "Wilson", "emma.wilson@example.com", "+61 400 000 005"),
]

# id, candidate, job, status, stage, score, created, updated
APPLICATIONS = [
    ("a1", "cand-1", "j1", "INTERVIEW", "TECHNICAL_INTERVIEW", 88, -30, -2),
    ("a2", "cand-2", "j1", "SCREENING", "PHONE_SCREEN", 72, -12, -3),
    ("a3", "cand-3", "j2", "OFFER", "OFFER_EXTENDED", 91, -40, -1),
    ("a4", "cand-4", "j2", "HIRED", "HIRED", 85, -55, -5),
    ("a5", "cand-5", "j3", "NEW", "NEW_APPLICATION", None, -4, -4),
    ("a6", "cand-1", "j4", "REJECTED", "REJECTED", 40, -70, -60),
]

# id, application, scheduled, status, type, duration, feedback
INTERVIEWS = [
    ("i1", "a1", 2, "SCHEDULED", "VIDEO", 60, None),
    ("i2", "a3", -7, "COMPLETED", "IN_PERSON", 45, "Strong portfolio, good culture fit."),
    ("i3", "a5", 3, "SCHEDULED", "PHONE", 30, None),
]

# id, application, status, amount, sent, expiry, responded
OFFERS = [
    ("o1", "a3", "SENT", 125000, -1, 7, None),
    ("o2", "a4", "ACCEPTED", 118000, -10, -3, -6),
]

# id, consultant, job, region, amount, status, type, created, paid
COMMISSIONS = [
    ("cm-1", "c1", "j2", "r1", 11800, "PENDING", "PLACEMENT", -5, None),
    ("cm-2", "c1", "j1", "r1", 4000, "PAID", "RECRUITMENT_SERVICE", -40, -20),
    ("cm-3", "c2", "j3", "r2", 6000, "PENDING", "PLACEMENT", -3, None),
    ("cm-4", "c3", "j4", "r3", 5000, "APPROVED", "PLACEMENT", -25, None),
]

WITHDRAWALS = [
    ("w-1", "c1", 2000, "COMPLETED", -15, -14),
]

# id, company, email, status, region, consultant, value, created
LEADS = [
    ("l-1", "Orbit Analytics", "hello@orbit.io", "NEW", "r1", "c1", 50000, -6),
    ("l-2", "Harbour Foods", "ops@harbourfoods.com", "CONVERTED", "r1", "c1", 30000, -50),
    ("l-3", "Yarra Energy", "talent@yarra.energy", "QUALIFIED", "r2", "c2", 42000, -9),
]

# id, company, amount, status, description, due, paid, created
BILLS = [
    ("b-1", "co-1", 5000, "PAID", "Recruitment service - Product Designer", -20, -18, -35),
    ("b-2", "co-1", 3000, "PENDING", "Job posting package", 14, None, -2),
    ("b-3", "co-2", 4000, "OVERDUE", "Recruitment service - Clinical Data Analyst", -5, None, -40),
]

# id, entity type, entity id, activity type, description, created by, created
ACTIVITIES = [
    ("act-1", "JOB", "j1", "NOTE", "Hiring manager asked for two more senior profiles.", "c1", -3),
    ("act-2", "CANDIDATE", "cand-1", "STATUS_CHANGE", "Moved to technical interview.", "c1", -2),
    ("act-3", "COMPANY", "co-2", "MEETING", "Quarterly hiring plan review.", "c2", -8),
    ("act-4", "CONSULTANT", "c1", "TASK", "Follow up with Orbit Analytics.", "c1", -1),
]


def _insert(conn: sqlite3.Connection, table: str, columns: list[str], rows: list[tuple[Any, ...]]) -> None:
    placeholders = ", ".join("?" for _ in columns)
    conn.executemany(f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", rows)


def _maybe(now: datetime, days: Optional[float]) -> Optional[str]:
    return None if days is None else stamp(now, days)


def seed_database(path: Path, now: Optional[datetime] = None) -> dict[str, int]:
    """Drop and recreate the database at ``path``; returns row counts per table."""
    now = now or datetime.now(timezone.utc)
    if path.exists():
        path.unlink()
    init_db(path)

    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        _insert(conn, "licensees", ["id", "name", "revenue_share"], LICENSEES)
        _insert(conn, "regions", ["id", "name", "licensee_id"], REGIONS)
        _insert(
            conn,
            "companies",
            ["id", "name", "domain", "region_id", "verification_status", "created_at"],
            [(*row[:5], stamp(now, row[5])) for row in COMPANIES],
        )
        _insert(conn, "users", ["id", "company_id", "name", "email", "role"], USERS)
        _insert(
            conn,
            "consultants",
            ["id", "first_name", "last_name", "email", "role", "region_id", "status"],
            CONSULTANTS,
        )
        _insert(
            conn,
            "jobs",
            [
                "id", "job_code", "title", "status", "company_id", "region_id", "location", "department",
                "assigned_consultant_id", "number_of_vacancies", "salary", "close_date", "created_at", "updated_at",
            ],
            [(*row[:11], stamp(now, 30), stamp(now, row[11]), stamp(now, -1)) for row in JOBS],
        )
        _insert(
            conn,
            "candidates",
            ["id", "first_name", "last_name", "email", "phone", "status", "updated_at"],
            [(*row, "ACTIVE", stamp(now, -1)) for row in CANDIDATES],
        )
        _insert(
            conn,
            "applications",
            ["id", "candidate_id", "job_id", "status", "stage", "score", "created_at", "updated_at"],
            [(*row[:6], stamp(now, row[6]), stamp(now, row[7])) for row in APPLICATIONS],
        )
        _insert(
            conn,
            "interviews",
            ["id", "application_id", "scheduled_date", "status", "interview_type", "duration", "feedback"],
            [(row[0], row[1], stamp(now, row[2]), *row[3:]) for row in INTERVIEWS],
        )
        _insert(
            conn,
            "offers",
            ["id", "application_id", "status", "offer_amount", "sent_at", "expiry_date", "responded_at"],
            [(*row[:4], stamp(now, row[4]), stamp(now, row[5]), _maybe(now, row[6])) for row in OFFERS],
        )
        _insert(
            conn,
            "commissions",
            ["id", "consultant_id", "job_id", "region_id", "amount", "status", "type", "created_at", "paid_at"],
            [(*row[:7], stamp(now, row[7]), _maybe(now, row[8])) for row in COMMISSIONS],
        )
        _insert(
            conn,
            "commission_withdrawals",
            ["id", "consultant_id", "amount", "status", "created_at", "processed_at"],
            [(*row[:4], stamp(now, row[4]), _maybe(now, row[5])) for row in WITHDRAWALS],
        )
        _insert(
            conn,
            "leads",
            ["id", "company_name", "contact_email", "status", "region_id", "consultant_id", "estimated_value", "created_at"],
            [(*row[:7], stamp(now, row[7])) for row in LEADS],
        )
        _insert(
            conn,
            "bills",
            ["id", "company_id", "amount", "status", "description", "due_date", "paid_at", "created_at"],
            [(*row[:5], stamp(now, row[5]), _maybe(now, row[6]), stamp(now, row[7])) for row in BILLS],
        )
        _insert(
            conn,
            "activities",
            ["id", "entity_type", "entity_id", "activity_type", "description", "created_by", "created_at"],
            [(*row[:6], stamp(now, row[6])) for row in ACTIVITIES],
        )
        conn.commit()

        tables = [
            "licensees", "regions", "companies", "users", "consultants", "jobs", "candidates", "applications",
            "interviews", "offers", "commissions", "commission_withdrawals", "leads", "bills", "activities",
        ]
        return {table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] for table in tables}
    finally:
        conn.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild and seed the HRM8 assistant demo database")
    parser.add_argument("--path", type=Path, default=None, help="Database file (defaults to DATABASE_PATH)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    path = args.path or get_settings().resolved_database_path
    counts = seed_database(path)
    print(f"Seeded {path}")
    print(json.dumps(counts, indent=2))


if __name__ == "__main__":
    main()
