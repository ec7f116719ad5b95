"""
Canteen Service - Students API
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, check_owner, get_current_user, require_admin
from canteen.core.exceptions import NotFoundError
from canteen.db import student_ops
from canteen.db.database import get_db
from canteen.db.wallet_ops import ensure_parent
from canteen.schemas.student import StudentCreate, StudentLink, StudentResponse, StudentUpdate

router = APIRouter(prefix="/students", tags=["students"])


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return await student_ops.create_student(db, **payload.model_dump())


@router.get("", response_model=list[StudentResponse])
async def list_students(
    parent_id: str | None = None,
    active_only: bool = False,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    if not user.is_admin:
        parent_id = user.id
    return await student_ops.list_students(db, parent_id=parent_id, active_only=active_only)


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    student = await student_ops.get_student(db, student_id)
    if student is None or (not user.is_admin and student.parent_id != user.id):
        raise NotFoundError("Student", student_id)
    return student


@router.patch("/{student_id}", response_model=StudentResponse)
async def update_student(
    student_id: str,
    payload: StudentUpdate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return await student_ops.update_student(db, student_id, payload.model_dump(exclude_unset=True))


@router.post("/{student_id}/link", response_model=StudentResponse)
async def link_student(
    student_id: str,
    payload: StudentLink,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """Link a student to a parent. Parents may only link to themselves."""
    check_owner(user, payload.parent_id)
    if not user.is_admin:
        await ensure_parent(db, user.id)
    return await student_ops.link_student(db, payload.parent_id, student_id)


@router.delete("/{student_id}/link", response_model=StudentResponse)
async def unlink_student(
    student_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    student = await student_ops.get_student(db, student_id)
    if student is None or student.parent_id is None:
        raise NotFoundError("Student", student_id)
    check_owner(user, student.parent_id)
    return await student_ops.unlink_student(db, student.parent_id, student_id)
