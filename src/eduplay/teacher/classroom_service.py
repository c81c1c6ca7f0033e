"""Classroom management for teachers.

A classroom is visible only to the teacher who owns it (admins see all).
Other teachers get NotFound, not Forbidden, so classroom ids do not leak.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.database import atomic
from eduplay.db.models import AssignmentClassroom, Classroom, ClassroomStudent, User, UserStats
from eduplay.db.statements import insert_ignore
from eduplay.errors import NotFoundError, ValidationError, translate_errors

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "description", "grade_level", "subject", "school_id", "is_active"})


def _owned_by(actor: User):  # noqa: ANN202
    """Ownership predicate for classroom queries."""
    if actor.role == "admin":
        return true()
    return Classroom.teacher_id == actor.id


async def get_owned_classroom(db: AsyncSession, actor: User, classroom_id: uuid.UUID) -> Classroom:
    result = await db.execute(select(Classroom).where(Classroom.id == classroom_id, _owned_by(actor)))
    classroom = result.scalar_one_or_none()
    if classroom is None:
        raise NotFoundError("Classroom not found")
    return classroom


async def _student_count(db: AsyncSession, classroom_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(ClassroomStudent).where(ClassroomStudent.classroom_id == classroom_id)
    )
    return result.scalar_one()


async def find_missing_users(db: AsyncSession, user_ids: list[uuid.UUID]) -> list[uuid.UUID]:
    """Ids in ``user_ids`` with no active user row."""
    if not user_ids:
        return []
    result = await db.execute(select(User.id).where(User.id.in_(user_ids), User.is_active.is_(True)))
    found = set(result.scalars().all())
    return [uid for uid in user_ids if uid not in found]


@translate_errors("create classroom")
async def create_classroom(db: AsyncSession, actor: User, data: dict[str, Any]) -> Classroom:
    now = datetime.now(timezone.utc)
    classroom = Classroom(
        teacher_id=actor.id,
        name=data["name"],
        description=data.get("description"),
        school_id=data.get("school_id"),
        grade_level=data.get("grade_level"),
        subject=data.get("subject"),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(classroom)
    await db.flush()
    logger.info("Classroom created: %s (id=%s, teacher=%s)", classroom.name, classroom.id, actor.id)
    return classroom


@translate_errors("list classrooms")
async def list_classrooms(
    db: AsyncSession, actor: User, page: int = 1, limit: int = 20
) -> tuple[list[tuple[Classroom, int]], int]:
    """Classrooms with their student counts, newest first."""
    total = (
        await db.execute(select(func.count()).select_from(Classroom).where(_owned_by(actor)))
    ).scalar_one()

    counts = (
        select(ClassroomStudent.classroom_id, func.count().label("student_count"))
        .group_by(ClassroomStudent.classroom_id)
        .subquery()
    )
    result = await db.execute(
        select(Classroom, func.coalesce(counts.c.student_count, 0))
        .outerjoin(counts, counts.c.classroom_id == Classroom.id)
        .where(_owned_by(actor))
        .order_by(Classroom.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [(classroom, int(count)) for classroom, count in result.all()], total


@translate_errors("fetch classroom")
async def get_classroom(db: AsyncSession, actor: User, classroom_id: uuid.UUID) -> tuple[Classroom, int]:
    classroom = await get_owned_classroom(db, actor, classroom_id)
    return classroom, await _student_count(db, classroom_id)


@translate_errors("update classroom")
async def update_classroom(
    db: AsyncSession, actor: User, classroom_id: uuid.UUID, changes: dict[str, Any]
) -> Classroom:
    classroom = await get_owned_classroom(db, actor, classroom_id)
    for field, value in changes.items():
        if field in UPDATABLE_FIELDS and value is not None:
            setattr(classroom, field, value)
    classroom.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return classroom


@translate_errors("delete classroom")
async def delete_classroom(db: AsyncSession, actor: User, classroom_id: uuid.UUID) -> None:
    """Delete a classroom, its enrolments and its assignment links."""
    await get_owned_classroom(db, actor, classroom_id)
    async with atomic(db):
        await db.execute(delete(ClassroomStudent).where(ClassroomStudent.classroom_id == classroom_id))
        await db.execute(delete(AssignmentClassroom).where(AssignmentClassroom.classroom_id == classroom_id))
        await db.execute(delete(Classroom).where(Classroom.id == classroom_id))
    logger.info("Classroom %s deleted by %s", classroom_id, actor.id)


@translate_errors("add students to classroom")
async def add_students(
    db: AsyncSession, actor: User, classroom_id: uuid.UUID, student_ids: list[uuid.UUID]
) -> int:
    """Enrol students. Already-enrolled students are skipped. Returns the number added."""
    await get_owned_classroom(db, actor, classroom_id)
    student_ids = list(dict.fromkeys(student_ids))
    if not student_ids:
        raise ValidationError("At least one student id is required")
    missing = await find_missing_users(db, student_ids)
    if missing:
        raise ValidationError(f"Invalid student ids: {', '.join(str(m) for m in missing)}")

    now = datetime.now(timezone.utc)
    async with atomic(db):
        added = await insert_ignore(
            db,
            ClassroomStudent,
            [
                {"id": uuid.uuid4(), "classroom_id": classroom_id, "student_id": sid, "joined_at": now}
                for sid in student_ids
            ],
            ["classroom_id", "student_id"],
        )
    logger.info("Classroom %s: %d students added", classroom_id, added)
    return added


@translate_errors("remove student from classroom")
async def remove_student(db: AsyncSession, actor: User, classroom_id: uuid.UUID, student_id: uuid.UUID) -> None:
    await get_owned_classroom(db, actor, classroom_id)
    result = await db.execute(
        delete(ClassroomStudent).where(
            ClassroomStudent.classroom_id == classroom_id, ClassroomStudent.student_id == student_id
        )
    )
    if result.rowcount == 0:
        raise NotFoundError("Student not enrolled in this classroom")
    await db.flush()


@translate_errors("list classroom students")
async def list_students(db: AsyncSession, actor: User, classroom_id: uuid.UUID) -> list[dict[str, Any]]:
    await get_owned_classroom(db, actor, classroom_id)
    result = await db.execute(
        select(ClassroomStudent, User, UserStats)
        .join(User, User.id == ClassroomStudent.student_id)
        .outerjoin(UserStats, UserStats.user_id == User.id)
        .where(ClassroomStudent.classroom_id == classroom_id)
        .order_by(func.lower(func.coalesce(User.full_name, User.display_name, User.email)))
    )
    return [
        {
            "id": user.id,
            "full_name": user.full_name,
            "display_name": user.display_name,
            "email": user.email,
            "avatar_url": user.avatar_url,
            "level": stats.level if stats else 1,
            "total_xp": stats.total_xp if stats else 0,
            "joined_at": enrolment.joined_at,
        }
        for enrolment, user, stats in result.all()
    ]
