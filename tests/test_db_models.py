from datetime import date

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealledger.app.db import models  # noqa: F401 - import to register models
from mealledger.app.db.base import Base
from mealledger.app.db.models import Allocation, ClaimEvent

from conftest import NOW, SERVICE_DATE


def test_db_models_create_tables():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    tables = Base.metadata.tables.keys()
    assert "schools" in tables
    assert "menus" in tables
    assert "students" in tables
    assert "allocations" in tables
    assert "claim_events" in tables


def test_unique_constraints_are_declared():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    inspector = inspect(engine)

    def unique_columns(table):
        return {tuple(c["column_names"]) for c in inspector.get_unique_constraints(table)}

    assert ("school_id", "menu_id", "date") in unique_columns("allocations")
    assert ("student_id", "allocation_id") in unique_columns("claim_events")
    assert ("school_id", "student_number") in unique_columns("students")


def test_second_claim_for_same_allocation_is_rejected(ledger):
    allocation_id = ledger.add_allocation()
    ledger.add_claim(ledger.student_a, allocation_id)

    with pytest.raises(IntegrityError):
        ledger.add_claim(ledger.student_a, allocation_id)


def test_duplicate_allocation_is_rejected(ledger):
    ledger.add_allocation(service_date=date(2024, 5, 20))

    with pytest.raises(IntegrityError):
        ledger.add_allocation(service_date=date(2024, 5, 20))


def test_allocation_loads_menu_and_school(ledger):
    allocation_id = ledger.add_allocation()
    with Session(ledger.sync_engine) as session:
        allocation = session.get(Allocation, allocation_id)
        assert allocation.menu.name == "Nasi Ayam"
        assert allocation.school.npsn == "10000001"
        assert allocation.date == SERVICE_DATE


def test_claim_service_date_is_local(ledger):
    allocation_id = ledger.add_allocation()
    # 18:30 UTC is already the next day in Jakarta
    claim_id = ledger.add_claim(
        ledger.student_a, allocation_id, claimed_at=NOW.replace(hour=18, minute=30)
    )
    with Session(ledger.sync_engine) as session:
        claim = session.get(ClaimEvent, claim_id)
        assert claim.service_date == date(2024, 5, 11)
