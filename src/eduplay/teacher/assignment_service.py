"""Assignment authoring and fan-out.

Rules:
- Assignments start unpublished and must reference at least one existing exercise
- Assigning to classrooms and students creates one submission per student,
  eagerly, with status ``not_started``
- Fan-out is idempotent: the (assignment, student) pair is unique and
  re-assigning never duplicates links or submissions
- Deleting an assignment removes its dependent rows first, in one transaction
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.database import atomic
from eduplay.db.models import (
    Assignment,
    AssignmentClassroom,
    AssignmentExercise,
    AssignmentStudent,
    AssignmentSubmission,
    Classroom,
    ClassroomStudent,
    Exercise,
    User,
)
from eduplay.db.statements import insert_ignore
from eduplay.errors import NotFoundError, ValidationError, translate_errors
from eduplay.teacher.classroom_service import find_missing_users

logger = logging.getLogger(__name__)

ASSIGNMENT_TYPES = frozenset({"practice", "quiz", "exam", "homework"})
MAX_TOTAL_POINTS = 1000
UPDATABLE_FIELDS = frozenset({"title", "description", "assignment_type", "due_date", "total_points", "is_published"})


def _owned_by(actor: User):  # noqa: ANN202
    if actor.role == "admin":
        return true()
    return Assignment.teacher_id == actor.id


def _validate_fields(data: dict[str, Any]) -> None:
    if "assignment_type" in data and data["assignment_type"] not in ASSIGNMENT_TYPES:
        raise ValidationError(f"assignmentType must be one of {', '.join(sorted(ASSIGNMENT_TYPES))}")
    total_points = data.get("total_points")
    if total_points is not None and not 0 <= total_points <= MAX_TOTAL_POINTS:
        raise ValidationError(f"totalPoints must be between 0 and {MAX_TOTAL_POINTS}")


async def get_owned_assignment(db: AsyncSession, actor: User, assignment_id: uuid.UUID) -> Assignment:
    result = await db.execute(select(Assignment).where(Assignment.id == assignment_id, _owned_by(actor)))
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("Assignment not found")
    return assignment


async def find_missing_exercises(db: AsyncSession, exercise_ids: list[uuid.UUID]) -> list[uuid.UUID]:
    result = await db.execute(select(Exercise.id).where(Exercise.id.in_(exercise_ids)))
    found = set(result.scalars().all())
    return [eid for eid in exercise_ids if eid not in found]


async def _link_exercises(db: AsyncSession, assignment_id: uuid.UUID, exercise_ids: list[uuid.UUID]) -> None:
    for index, exercise_id in enumerate(exercise_ids):
        db.add(AssignmentExercise(assignment_id=assignment_id, exercise_id=exercise_id, order_index=index))
    await db.flush()


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------


@translate_errors("create assignment")
async def create_assignment(db: AsyncSession, teacher_id: uuid.UUID, data: dict[str, Any]) -> Assignment:
    """Create an unpublished assignment with its exercise links."""
    exercise_ids = list(dict.fromkeys(data.get("exercise_ids") or []))
    if not exercise_ids:
        raise ValidationError("At least one exercise is required")
    _validate_fields(data)
    missing = await find_missing_exercises(db, exercise_ids)
    if missing:
        raise ValidationError(f"Invalid exercise ids: {', '.join(str(m) for m in missing)}")

    now = datetime.now(timezone.utc)
    async with atomic(db):
        assignment = Assignment(
            teacher_id=teacher_id,
            title=data["title"],
            description=data.get("description"),
            assignment_type=data["assignment_type"],
            due_date=data.get("due_date"),
            total_points=data.get("total_points") if data.get("total_points") is not None else 100,
            is_published=False,
            created_at=now,
            updated_at=now,
        )
        db.add(assignment)
        await db.flush()
        await _link_exercises(db, assignment.id, exercise_ids)

    logger.info(
        "Assignment created: %s (id=%s, teacher=%s, exercises=%d)",
        assignment.title, assignment.id, teacher_id, len(exercise_ids),
    )
    return assignment


@translate_errors("list assignments")
async def list_assignments(
    db: AsyncSession, actor: User, page: int = 1, limit: int = 20
) -> tuple[list[Assignment], int]:
    total = (
        await db.execute(select(func.count()).select_from(Assignment).where(_owned_by(actor)))
    ).scalar_one()
    result = await db.execute(
        select(Assignment)
        .where(_owned_by(actor))
        .order_by(Assignment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


@translate_errors("fetch assignment exercises")
async def list_assignment_exercises(db: AsyncSession, assignment_id: uuid.UUID) -> list[dict[str, Any]]:
    result = await db.execute(
        select(AssignmentExercise, Exercise)
        .join(Exercise, Exercise.id == AssignmentExercise.exercise_id)
        .where(AssignmentExercise.assignment_id == assignment_id)
        .order_by(AssignmentExercise.order_index.asc())
    )
    return [
        {
            "id": exercise.id,
            "title": exercise.title,
            "difficulty": exercise.difficulty,
            "points": exercise.points,
            "order_index": link.order_index,
        }
        for link, exercise in result.all()
    ]


@translate_errors("fetch assignment")
async def get_assignment(
    db: AsyncSession, actor: User, assignment_id: uuid.UUID
) -> tuple[Assignment, list[dict[str, Any]]]:
    assignment = await get_owned_assignment(db, actor, assignment_id)
    return assignment, await list_assignment_exercises(db, assignment_id)


@translate_errors("update assignment")
async def update_assignment(
    db: AsyncSession, actor: User, assignment_id: uuid.UUID, changes: dict[str, Any]
) -> Assignment:
    assignment = await get_owned_assignment(db, actor, assignment_id)
    changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    _validate_fields({k: v for k, v in changes.items() if v is not None})

    for field, value in changes.items():
        if value is None and field != "due_date":
            continue
        setattr(assignment, field, value)
    assignment.updated_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info("Assignment %s updated: %s", assignment_id, sorted(changes))
    return assignment


@translate_errors("delete assignment")
async def delete_assignment(db: AsyncSession, actor: User, assignment_id: uuid.UUID) -> None:
    """Delete an assignment and everything that references it."""
    await get_owned_assignment(db, actor, assignment_id)
    async with atomic(db):
        for model in (AssignmentExercise, AssignmentClassroom, AssignmentStudent, AssignmentSubmission):
            await db.execute(delete(model).where(model.assignment_id == assignment_id))
        await db.execute(delete(Assignment).where(Assignment.id == assignment_id))
    logger.info("Assignment %s deleted by %s", assignment_id, actor.id)


# ---------------------------------------------------------------------------
# Fan-out
# ---------------------------------------------------------------------------


async def _create_submissions(
    db: AsyncSession, assignment_id: uuid.UUID, student_ids: list[uuid.UUID], now: datetime
) -> int:
    return await insert_ignore(
        db,
        AssignmentSubmission,
        [
            {
                "id": uuid.uuid4(),
                "assignment_id": assignment_id,
                "student_id": sid,
                "status": "not_started",
                "created_at": now,
                "updated_at": now,
            }
            for sid in student_ids
        ],
        ["assignment_id", "student_id"],
    )


@translate_errors("assign assignment")
async def assign_to(
    db: AsyncSession,
    actor: User,
    assignment_id: uuid.UUID,
    classroom_ids: list[uuid.UUID] | None = None,
    student_ids: list[uuid.UUID] | None = None,
) -> dict[str, int]:
    """Assign to classrooms and/or individual students.

    Returns ``{"classrooms": n, "students": m}`` where ``students`` counts the
    distinct students whose submission row now exists for this call.
    """
    classroom_ids = list(dict.fromkeys(classroom_ids or []))
    student_ids = list(dict.fromkeys(student_ids or []))
    if not classroom_ids and not student_ids:
        raise ValidationError("Provide at least one classroom or student")

    await get_owned_assignment(db, actor, assignment_id)

    if classroom_ids:
        classroom_filter = [Classroom.id.in_(classroom_ids)]
        if actor.role != "admin":
            classroom_filter.append(Classroom.teacher_id == actor.id)
        owned = set((await db.execute(select(Classroom.id).where(*classroom_filter))).scalars().all())
        unknown = [cid for cid in classroom_ids if cid not in owned]
        if unknown:
            raise NotFoundError(f"Classroom not found: {', '.join(str(c) for c in unknown)}")

    missing = await find_missing_users(db, student_ids)
    if missing:
        raise ValidationError(f"Invalid student ids: {', '.join(str(m) for m in missing)}")

    now = datetime.now(timezone.utc)
    touched: set[uuid.UUID] = set()
    async with atomic(db):
        for classroom_id in classroom_ids:
            await insert_ignore(
                db,
                AssignmentClassroom,
                {"id": uuid.uuid4(), "assignment_id": assignment_id, "classroom_id": classroom_id, "assigned_at": now},
                ["assignment_id", "classroom_id"],
            )
            enrolled = (
                await db.execute(
                    select(ClassroomStudent.student_id).where(ClassroomStudent.classroom_id == classroom_id)
                )
            ).scalars().all()
            await _create_submissions(db, assignment_id, list(enrolled), now)
            touched.update(enrolled)

        if student_ids:
            await insert_ignore(
                db,
                AssignmentStudent,
                [
                    {"id": uuid.uuid4(), "assignment_id": assignment_id, "student_id": sid, "assigned_at": now}
                    for sid in student_ids
                ],
                ["assignment_id", "student_id"],
            )
            await _create_submissions(db, assignment_id, student_ids, now)
            touched.update(student_ids)

    logger.info(
        "Assignment %s assigned to %d classrooms, %d students",
        assignment_id, len(classroom_ids), len(touched),
    )
    return {"classrooms": len(classroom_ids), "students": len(touched)}


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


def submission_row(submission: AssignmentSubmission, student: User, **extra: Any) -> dict[str, Any]:
    return {
        "id": submission.id,
        "assignment_id": submission.assignment_id,
        "student_id": student.id,
        "student_name": student.full_name or student.display_name or student.email,
        "status": submission.status,
        "score": float(submission.score) if submission.score is not None else None,
        "feedback": submission.feedback,
        "submitted_at": submission.submitted_at,
        "graded_at": submission.graded_at,
        **extra,
    }


@translate_errors("fetch submissions")
async def list_submissions(db: AsyncSession, actor: User, assignment_id: uuid.UUID) -> list[dict[str, Any]]:
    await get_owned_assignment(db, actor, assignment_id)
    result = await db.execute(
        select(AssignmentSubmission, User)
        .join(User, User.id == AssignmentSubmission.student_id)
        .where(AssignmentSubmission.assignment_id == assignment_id)
        .order_by(func.lower(func.coalesce(User.full_name, User.display_name, User.email)))
    )
    return [submission_row(submission, student) for submission, student in result.all()]


@translate_errors("fetch pending submissions")
async def list_pending_submissions(db: AsyncSession, actor: User) -> list[dict[str, Any]]:
    """Submitted work awaiting grading across the actor's assignments, oldest first."""
    result = await db.execute(
        select(AssignmentSubmission, User, Assignment)
        .join(User, User.id == AssignmentSubmission.student_id)
        .join(Assignment, Assignment.id == AssignmentSubmission.assignment_id)
        .where(AssignmentSubmission.status == "submitted", _owned_by(actor))
        .order_by(AssignmentSubmission.submitted_at.asc())
    )
    return [
        submission_row(submission, student, assignment_title=assignment.title)
        for submission, student, assignment in result.all()
    ]
