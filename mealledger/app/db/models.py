import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mealledger.app.core.windows import utc_now
from mealledger.app.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class School(Base):
    """Reference record; owned by the school CRUD collaborator."""

    __tablename__ = "schools"
    __table_args__ = (Index("idx_schools_government", "government_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    npsn: Mapped[str] = mapped_column(String(32), unique=True)
    government_id: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Menu(Base):
    """Meal offering; reference data for the ledger, never mutated by it."""

    __tablename__ = "menus"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    date: Mapped[date] = mapped_column(Date)
    price_per_portion: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False))
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Student(Base):
    """Student record; the token-derived identity is the student number."""

    __tablename__ = "students"
    __table_args__ = (
        UniqueConstraint("school_id", "student_number"),
        Index("idx_students_school", "school_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    school_id: Mapped[str] = mapped_column(ForeignKey("schools.id"))
    name: Mapped[str] = mapped_column(String(255))
    student_number: Mapped[str] = mapped_column(String(64))
    class_name: Mapped[str | None] = mapped_column("class", String(32), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Allocation(Base):
    """Quota of portions of one menu for one school on one service date."""

    __tablename__ = "allocations"
    __table_args__ = (
        UniqueConstraint("school_id", "menu_id", "date"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
        Index("idx_allocations_school_date", "school_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    school_id: Mapped[str] = mapped_column(ForeignKey("schools.id"))
    menu_id: Mapped[str] = mapped_column(ForeignKey("menus.id"))
    quantity: Mapped[int] = mapped_column(Integer)
    date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    school: Mapped[School] = relationship(lazy="joined", innerjoin=True)
    menu: Mapped[Menu] = relationship(lazy="joined", innerjoin=True)

    def __repr__(self) -> str:
        return f"<Allocation(id={self.id}, school={self.school_id}, menu={self.menu_id}, date={self.date}, quantity={self.quantity})>"


class ClaimEvent(Base):
    """Ledger entry: one student consumed one portion of one allocation.

    Append-only. The (student_id, allocation_id) unique constraint is the
    storage-level guarantee against double claims.
    """

    __tablename__ = "claim_events"
    __table_args__ = (
        UniqueConstraint("student_id", "allocation_id"),
        Index("idx_claim_events_allocation_time", "allocation_id", "claimed_at"),
        Index("idx_claim_events_student_time", "student_id", "claimed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id"))
    allocation_id: Mapped[str] = mapped_column(ForeignKey("allocations.id"))
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    service_date: Mapped[date] = mapped_column(Date)
