"""Read access to School, Menu and Student reference records.

These records are owned by other services; the ledger only looks them up.
"""
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mealledger.app.db.models import Menu, School, Student


async def get_school(session: AsyncSession, school_id: str) -> Optional[School]:
    result = await session.execute(select(School).where(School.id == school_id))
    return result.scalar_one_or_none()


async def get_menu(session: AsyncSession, menu_id: str) -> Optional[Menu]:
    result = await session.execute(select(Menu).where(Menu.id == menu_id))
    return result.scalar_one_or_none()


async def list_schools_for_government(
    session: AsyncSession,
    government_id: str
) -> list[School]:
    result = await session.execute(
        select(School)
        .where(School.government_id == government_id)
        .order_by(School.name)
    )
    return list(result.scalars().all())


async def get_student_by_number(
    session: AsyncSession,
    school_id: str,
    student_number: str
) -> Optional[Student]:
    """Find a student by number within one school.

    The school is part of the lookup key: a number that exists at another
    school does not match.

    Args:
        session: Database session from FastAPI dependency
        school_id: School the student must belong to
        student_number: Number captured from the student token

    Returns:
        Student object if found, None otherwise
    """
    result = await session.execute(
        select(Student).where(
            Student.school_id == school_id,
            Student.student_number == student_number,
        )
    )
    return result.scalar_one_or_none()


async def get_student_by_id(
    session: AsyncSession,
    student_id: str
) -> Optional[Student]:
    result = await session.execute(select(Student).where(Student.id == student_id))
    return result.scalar_one_or_none()


async def list_students(
    session: AsyncSession,
    school_id: str,
    class_name: Optional[str] = None,
    grade: Optional[str] = None,
) -> list[Student]:
    query = select(Student).where(Student.school_id == school_id)
    if class_name:
        query = query.where(Student.class_name == class_name)
    if grade:
        query = query.where(Student.grade == grade)
    result = await session.execute(query.order_by(Student.name))
    return list(result.scalars().all())


async def count_students(
    session: AsyncSession,
    school_id: Optional[str] = None,
    government_id: Optional[str] = None,
) -> int:
    """Count students of one school or of every school of a government."""
    query = select(func.count(Student.id))
    if school_id is not None:
        query = query.where(Student.school_id == school_id)
    if government_id is not None:
        query = query.join(School, Student.school_id == School.id).where(
            School.government_id == government_id
        )
    result = await session.execute(query)
    return result.scalar_one()


async def count_students_by_school(
    session: AsyncSession,
    government_id: str
) -> dict[str, int]:
    result = await session.execute(
        select(Student.school_id, func.count(Student.id))
        .join(School, Student.school_id == School.id)
        .where(School.government_id == government_id)
        .group_by(Student.school_id)
    )
    return {school_id: count for school_id, count in result.all()}
