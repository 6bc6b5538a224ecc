from __future__ import annotations

from pathlib import Path

import pytest

from assistant.services.actors import CompanyUser, Consultant, Hrm8User
from assistant.services.config import get_settings
from scripts.seed_demo import seed_database


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def demo_db(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "assistant.db"
    monkeypatch.setenv("DATABASE_PATH", str(path))
    get_settings.cache_clear()
    seed_database(path)
    return path


@pytest.fixture
def company_admin() -> CompanyUser:
    return CompanyUser("u-1", "dana@acme-robotics.com", "co-1", "ADMIN")


@pytest.fixture
def company_user() -> CompanyUser:
    return CompanyUser("u-2", "sam@acme-robotics.com", "co-1", "USER")


@pytest.fixture
def global_admin() -> Hrm8User:
    return Hrm8User("h-1", "morgan@hrm8.com", "GLOBAL_ADMIN")


@pytest.fixture
def regional_admin() -> Hrm8User:
    return Hrm8User("h-2", "riley@hrm8.com", "REGIONAL_LICENSEE", "lic-1", ("r1", "r2"))


@pytest.fixture
def consultant() -> Consultant:
    return Consultant("c1", "priya@hrm8.com", "c1", "r1", "RECRUITER")
