"""
Canteen Service - Students and parent links
"""
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import ConflictError, NotFoundError, ValidationError
from canteen.core.retry import with_transient_retry
from canteen.core.utils import utcnow
from canteen.models.user import Student
from canteen.models.wallet import Parent

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "first_name", "last_name", "grade", "allergies", "dietary_restrictions", "is_active",
})


async def create_student(
    db: AsyncSession,
    *,
    first_name: str,
    last_name: str,
    grade: str,
    allergies: str | None = None,
    dietary_restrictions: str | None = None,
    parent_id: str | None = None,
) -> Student:
    if not first_name.strip() or not last_name.strip():
        raise ValidationError("Student first and last name are required.")
    student = Student(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        grade=grade.strip(),
        allergies=allergies,
        dietary_restrictions=dietary_restrictions,
        is_active=True,
    )
    db.add(student)
    await db.flush()
    if parent_id:
        await _attach(db, student, parent_id)
    await db.commit()
    logger.info("Student created: %s (%s)", student.full_name, student.id)
    return student


@with_transient_retry()
async def get_student(db: AsyncSession, student_id: str) -> Student | None:
    return await db.get(Student, student_id)


@with_transient_retry()
async def list_students(
    db: AsyncSession, *, parent_id: str | None = None, active_only: bool = False,
) -> list[Student]:
    stmt = select(Student).order_by(Student.last_name, Student.first_name)
    if parent_id:
        stmt = stmt.where(Student.parent_id == parent_id)
    if active_only:
        stmt = stmt.where(Student.is_active.is_(True))
    return list((await db.execute(stmt)).scalars())


async def update_student(db: AsyncSession, student_id: str, changes: Mapping[str, Any]) -> Student:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    student = await db.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student", student_id)
    for key, value in changes.items():
        setattr(student, key, value)
    student.updated_at = utcnow()
    await db.commit()
    return student


async def _attach(db: AsyncSession, student: Student, parent_id: str) -> None:
    parent = await db.get(Parent, parent_id)
    if parent is None:
        raise NotFoundError("Parent", parent_id)
    if student.parent_id and student.parent_id != parent_id:
        raise ConflictError(
            f"Student '{student.id}' is already linked to another parent.",
            details={"student_id": student.id},
        )
    student.parent_id = parent_id
    student.updated_at = utcnow()
    if student.id not in (parent.children or []):
        parent.children = [*(parent.children or []), student.id]
        parent.updated_at = utcnow()


async def link_student(db: AsyncSession, parent_id: str, student_id: str) -> Student:
    student = await db.get(Student, student_id)
    if student is None:
        raise NotFoundError("Student", student_id)
    try:
        await _attach(db, student, parent_id)
        await db.commit()
    except (NotFoundError, ConflictError):
        await db.rollback()
        raise
    logger.info("Student %s linked to parent %s", student_id, parent_id)
    return student


async def unlink_student(db: AsyncSession, parent_id: str, student_id: str) -> Student:
    student = await db.get(Student, student_id)
    if student is None or student.parent_id != parent_id:
        raise NotFoundError("Student", student_id)
    parent = await db.get(Parent, parent_id)
    student.parent_id = None
    student.updated_at = utcnow()
    if parent is not None and student_id in (parent.children or []):
        parent.children = [c for c in parent.children if c != student_id]
        parent.updated_at = utcnow()
    await db.commit()
    logger.info("Student %s unlinked from parent %s", student_id, parent_id)
    return student


async def require_linked_student(db: AsyncSession, parent_id: str, student_id: str) -> Student:
    """The student, if it belongs to parent_id and is active."""
    student = await db.get(Student, student_id)
    if student is None or student.parent_id != parent_id:
        raise NotFoundError("Student", student_id)
    if not student.is_active:
        raise ValidationError(f"Student '{student.full_name}' is not active.")
    return student
