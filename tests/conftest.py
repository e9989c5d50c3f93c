"""Shared fixtures: a seeded SQLite ledger database per test."""

import os
import tempfile
from datetime import date, datetime, timezone
from types import SimpleNamespace
from typing import Optional

# Settings are read at import time; point the default engine at a throwaway
# file database so /health and friends never reach for PostgreSQL.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(), 'default.db')}",
)

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from mealledger.app.api.metrics import reset_metrics_collector
from mealledger.app.core.windows import local_date_of
from mealledger.app.db.async_session import build_session_maker, get_db
from mealledger.app.db.base import Base
from mealledger.app.db.models import Allocation, ClaimEvent, Menu, School, Student
from mealledger.app.middleware.auth import get_internal_token
from mealledger.app.services.claim_locks import reset_claim_locks

TEST_TOKEN = "test-internal-token"

# Friday 2024-05-10, 10:00 in Asia/Jakarta
NOW = datetime(2024, 5, 10, 3, 0, tzinfo=timezone.utc)
SERVICE_DATE = date(2024, 5, 10)


class LedgerFixture(SimpleNamespace):
    """Ids of the seeded rows plus helpers writing more through a sync engine."""

    def add_allocation(
        self,
        quantity: int = 150,
        service_date: date = SERVICE_DATE,
        school_id: Optional[str] = None,
        menu_id: Optional[str] = None,
    ) -> str:
        with Session(self.sync_engine) as session:
            allocation = Allocation(
                school_id=school_id or self.school_a,
                menu_id=menu_id or self.menu,
                quantity=quantity,
                date=service_date,
            )
            session.add(allocation)
            session.commit()
            return allocation.id

    def add_claim(self, student_id: str, allocation_id: str, claimed_at: datetime = NOW) -> str:
        with Session(self.sync_engine) as session:
            claim = ClaimEvent(
                student_id=student_id,
                allocation_id=allocation_id,
                claimed_at=claimed_at,
                service_date=local_date_of(claimed_at),
            )
            session.add(claim)
            session.commit()
            return claim.id


def _seed(sync_engine) -> dict:
    with Session(sync_engine) as session:
        session.add_all([
            School(id="school-a", name="SD Negeri 1", npsn="10000001", government_id="gov-1"),
            School(id="school-b", name="SD Negeri 2", npsn="10000002", government_id="gov-1"),
            School(id="school-c", name="SD Negeri 3", npsn="20000001", government_id="gov-2"),
            Menu(
                id="menu-1",
                name="Nasi Ayam",
                description="Rice with chicken and vegetables",
                date=SERVICE_DATE,
                price_per_portion=15000,
            ),
            Menu(
                id="menu-2",
                name="Nasi Ikan",
                description=None,
                date=SERVICE_DATE,
                price_per_portion=12000,
            ),
        ])
        students = {
            "student_a": Student(id="student-a", school_id="school-a", name="Ani", student_number="1001", class_name="4A", grade="4"),
            "student_b": Student(id="student-b", school_id="school-a", name="Budi", student_number="1002", class_name="4A", grade="4"),
            "student_c": Student(id="student-c", school_id="school-a", name="Citra", student_number="1003", class_name="5B", grade="5"),
            "student_d": Student(id="student-d", school_id="school-a", name="Dewi", student_number="1004", class_name="5B", grade="5"),
            "student_e": Student(id="student-e", school_id="school-a", name="Eko", student_number="1005", class_name="6C", grade="6"),
            # Same number as student_a, different school
            "student_other": Student(id="student-other", school_id="school-b", name="Fajar", student_number="1001", class_name="4A", grade="4"),
        }
        ids = {name: student.id for name, student in students.items()}
        session.add_all(students.values())
        session.commit()
    return ids


@pytest.fixture
def ledger(tmp_path) -> LedgerFixture:
    """A seeded database file: two schools of gov-1, one of gov-2, two menus
    and five students at school-a.
    """
    path = tmp_path / "ledger.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    students = _seed(sync_engine)

    fixture = LedgerFixture(
        sync_engine=sync_engine,
        async_url=f"sqlite+aiosqlite:///{path}",
        government="gov-1",
        other_government="gov-2",
        school_a="school-a",
        school_b="school-b",
        school_c="school-c",
        menu="menu-1",
        other_menu="menu-2",
        **students,
    )
    yield fixture
    sync_engine.dispose()


@pytest_asyncio.fixture
async def session_maker(ledger):
    # NullPool: every session gets its own connection, like separate terminals
    engine = create_async_engine(ledger.async_url, poolclass=NullPool)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


def _clear_internal_token_cache() -> None:
    if hasattr(get_internal_token, "_cached_token"):
        delattr(get_internal_token, "_cached_token")


@pytest.fixture
def client(ledger, monkeypatch):
    """TestClient bound to the seeded database, without lifespan."""
    from mealledger.app.main import app

    _clear_internal_token_cache()
    monkeypatch.setenv("INTERNAL_AUTH_TOKEN", TEST_TOKEN)
    reset_metrics_collector()
    reset_claim_locks()

    engine = create_async_engine(ledger.async_url, poolclass=NullPool)
    maker = build_session_maker(engine)

    async def override_get_db():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
    reset_metrics_collector()
    _clear_internal_token_cache()


def caller_headers(caller_id: str, role: str, token: str = TEST_TOKEN) -> dict:
    return {
        "Authorization": f"Bearer {token}",
        "X-Caller-Id": caller_id,
        "X-Caller-Role": role,
    }


@pytest.fixture
def auth_headers():
    return caller_headers
