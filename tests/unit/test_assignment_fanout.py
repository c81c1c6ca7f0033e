"""Unit tests for classrooms, assignment authoring and assignment fan-out."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.db.models import (
    AssignmentClassroom,
    AssignmentExercise,
    AssignmentStudent,
    AssignmentSubmission,
    ClassroomStudent,
)
from eduplay.errors import NotFoundError, ValidationError
from eduplay.teacher.assignment_service import (
    assign_to,
    create_assignment,
    delete_assignment,
    get_assignment,
    list_assignments,
    list_submissions,
    update_assignment,
)
from eduplay.teacher.classroom_service import (
    add_students,
    create_classroom,
    delete_classroom,
    get_classroom,
    list_classrooms,
    list_students,
    remove_student,
)


async def _count(db: AsyncSession, model, **filters) -> int:
    stmt = select(func.count()).select_from(model)
    for column, value in filters.items():
        stmt = stmt.where(getattr(model, column) == value)
    return (await db.execute(stmt)).scalar_one()


async def _classroom_with_students(db: AsyncSession, make_user, teacher, count: int):
    classroom = await create_classroom(db, teacher, {"name": "Class 5A"})
    students = [await make_user(f"Student {i}") for i in range(count)]
    await add_students(db, teacher, classroom.id, [s.id for s in students])
    return classroom, students


async def _assignment(db: AsyncSession, make_exercise, teacher, **data):
    exercises = [await make_exercise("Fractions"), await make_exercise("Decimals")]
    payload = {
        "title": "Week 1",
        "assignment_type": "homework",
        "exercise_ids": [e.id for e in exercises],
        "due_date": datetime.now(timezone.utc) + timedelta(days=7),
        **data,
    }
    return await create_assignment(db, teacher.id, payload)


class TestClassrooms:
    @pytest.mark.asyncio
    async def test_add_students_is_idempotent(self, db_session: AsyncSession, make_user):
        teacher = await make_user("Teacher", role="teacher")
        classroom, students = await _classroom_with_students(db_session, make_user, teacher, 2)
        newcomer = await make_user("Newcomer")

        added = await add_students(db_session, teacher, classroom.id, [students[0].id, newcomer.id, newcomer.id])

        assert added == 1
        _, count = await get_classroom(db_session, teacher, classroom.id)
        assert count == 3

    @pytest.mark.asyncio
    async def test_unknown_student_rejected(self, db_session: AsyncSession, make_user):
        teacher = await make_user("Teacher", role="teacher")
        classroom = await create_classroom(db_session, teacher, {"name": "Class 5A"})

        with pytest.raises(ValidationError, match="Invalid student ids"):
            await add_students(db_session, teacher, classroom.id, [uuid.uuid4()])

    @pytest.mark.asyncio
    async def test_classroom_hidden_from_other_teachers(self, db_session: AsyncSession, make_user):
        owner = await make_user("Owner", role="teacher")
        other = await make_user("Other", role="teacher")
        admin = await make_user("Admin", role="admin")
        classroom = await create_classroom(db_session, owner, {"name": "Class 5A"})

        with pytest.raises(NotFoundError):
            await get_classroom(db_session, other, classroom.id)
        found, _ = await get_classroom(db_session, admin, classroom.id)
        assert found.id == classroom.id

        rows, total = await list_classrooms(db_session, other)
        assert rows == []
        assert total == 0

    @pytest.mark.asyncio
    async def test_list_classrooms_with_counts(self, db_session: AsyncSession, make_user):
        teacher = await make_user("Teacher", role="teacher")
        classroom, _ = await _classroom_with_students(db_session, make_user, teacher, 3)

        rows, total = await list_classrooms(db_session, teacher)

        assert total == 1
        assert rows == [(classroom, 3)]

    @pytest.mark.asyncio
    async def test_remove_and_list_students(self, db_session: AsyncSession, make_user):
        teacher = await make_user("Teacher", role="teacher")
        classroom, (first, second) = await _classroom_with_students(db_session, make_user, teacher, 2)

        await remove_student(db_session, teacher, classroom.id, first.id)

        assert [s["id"] for s in await list_students(db_session, teacher, classroom.id)] == [second.id]
        with pytest.raises(NotFoundError):
            await remove_student(db_session, teacher, classroom.id, first.id)

    @pytest.mark.asyncio
    async def test_delete_classroom_removes_enrolments(self, db_session: AsyncSession, make_user):
        teacher = await make_user("Teacher", role="teacher")
        classroom, _ = await _classroom_with_students(db_session, make_user, teacher, 2)

        await delete_classroom(db_session, teacher, classroom.id)

        assert await _count(db_session, ClassroomStudent, classroom_id=classroom.id) == 0
        with pytest.raises(NotFoundError):
            await get_classroom(db_session, teacher, classroom.id)


class TestCreateAssignment:
    @pytest.mark.asyncio
    async def test_created_unpublished_with_ordered_exercises(
        self, db_session: AsyncSession, make_user, make_exercise
    ):
        teacher = await make_user("Teacher", role="teacher")

        assignment = await _assignment(db_session, make_exercise, teacher)

        assert assignment.is_published is False
        assert assignment.total_points == 100
        _, exercises = await get_assignment(db_session, teacher, assignment.id)
        assert [e["title"] for e in exercises] == ["Fractions", "Decimals"]
        assert [e["order_index"] for e in exercises] == [0, 1]

    @pytest.mark.asyncio
    async def test_requires_exercises(self, db_session: AsyncSession, make_user):
        teacher = await make_user("Teacher", role="teacher")
        with pytest.raises(ValidationError, match="At least one exercise"):
            await create_assignment(
                db_session, teacher.id, {"title": "Empty", "assignment_type": "quiz", "exercise_ids": []}
            )

    @pytest.mark.asyncio
    async def test_unknown_exercise_creates_nothing(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        exercise = await make_exercise()

        with pytest.raises(ValidationError, match="Invalid exercise ids"):
            await create_assignment(
                db_session,
                teacher.id,
                {"title": "Broken", "assignment_type": "quiz", "exercise_ids": [exercise.id, uuid.uuid4()]},
            )
        assert await _count(db_session, AssignmentExercise) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [{"assignment_type": "essay"}, {"total_points": 1001}, {"total_points": -1}],
    )
    async def test_invalid_fields(self, db_session: AsyncSession, make_user, make_exercise, overrides):
        teacher = await make_user("Teacher", role="teacher")
        with pytest.raises(ValidationError):
            await _assignment(db_session, make_exercise, teacher, **overrides)

    @pytest.mark.asyncio
    async def test_update_and_list(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        other = await make_user("Other", role="teacher")
        assignment = await _assignment(db_session, make_exercise, teacher)

        updated = await update_assignment(db_session, teacher, assignment.id, {"is_published": True, "title": "W1"})

        assert updated.is_published is True
        assert updated.title == "W1"
        assignments, total = await list_assignments(db_session, teacher)
        assert (total, [a.id for a in assignments]) == (1, [assignment.id])
        assert await list_assignments(db_session, other) == ([], 0)


class TestAssignFanOut:
    @pytest.mark.asyncio
    async def test_classroom_fan_out_creates_submission_per_student(
        self, db_session: AsyncSession, make_user, make_exercise
    ):
        teacher = await make_user("Teacher", role="teacher")
        classroom, students = await _classroom_with_students(db_session, make_user, teacher, 3)
        assignment = await _assignment(db_session, make_exercise, teacher)

        counts = await assign_to(db_session, teacher, assignment.id, classroom_ids=[classroom.id])

        assert counts == {"classrooms": 1, "students": 3}
        submissions = await list_submissions(db_session, teacher, assignment.id)
        assert sorted(s["student_id"] for s in submissions) == sorted(s.id for s in students)
        assert {s["status"] for s in submissions} == {"not_started"}

    @pytest.mark.asyncio
    async def test_repeat_assignment_is_idempotent(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        classroom, students = await _classroom_with_students(db_session, make_user, teacher, 3)
        assignment = await _assignment(db_session, make_exercise, teacher)

        await assign_to(db_session, teacher, assignment.id, classroom_ids=[classroom.id])
        await assign_to(db_session, teacher, assignment.id, classroom_ids=[classroom.id])

        assert await _count(db_session, AssignmentSubmission, assignment_id=assignment.id) == 3
        assert await _count(db_session, AssignmentClassroom, assignment_id=assignment.id) == 1

    @pytest.mark.asyncio
    async def test_overlapping_student_gets_one_submission(
        self, db_session: AsyncSession, make_user, make_exercise
    ):
        teacher = await make_user("Teacher", role="teacher")
        classroom, students = await _classroom_with_students(db_session, make_user, teacher, 2)
        outsider = await make_user("Outsider")
        assignment = await _assignment(db_session, make_exercise, teacher)

        counts = await assign_to(
            db_session,
            teacher,
            assignment.id,
            classroom_ids=[classroom.id],
            student_ids=[students[0].id, outsider.id],
        )

        assert counts == {"classrooms": 1, "students": 3}
        assert await _count(db_session, AssignmentSubmission, assignment_id=assignment.id) == 3
        assert await _count(db_session, AssignmentStudent, assignment_id=assignment.id) == 2

    @pytest.mark.asyncio
    async def test_needs_a_target(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        assignment = await _assignment(db_session, make_exercise, teacher)

        with pytest.raises(ValidationError, match="at least one classroom or student"):
            await assign_to(db_session, teacher, assignment.id)

    @pytest.mark.asyncio
    async def test_other_teachers_classroom_not_found(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        other = await make_user("Other", role="teacher")
        foreign, _ = await _classroom_with_students(db_session, make_user, other, 2)
        assignment = await _assignment(db_session, make_exercise, teacher)

        with pytest.raises(NotFoundError, match="Classroom not found"):
            await assign_to(db_session, teacher, assignment.id, classroom_ids=[foreign.id])
        assert await _count(db_session, AssignmentSubmission) == 0

    @pytest.mark.asyncio
    async def test_unknown_student_assigns_nothing(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        student = await make_user("Student")
        assignment = await _assignment(db_session, make_exercise, teacher)

        with pytest.raises(ValidationError):
            await assign_to(db_session, teacher, assignment.id, student_ids=[student.id, uuid.uuid4()])
        assert await _count(db_session, AssignmentSubmission) == 0

    @pytest.mark.asyncio
    async def test_admin_assigns_any_classroom(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        admin = await make_user("Admin", role="admin")
        classroom, _ = await _classroom_with_students(db_session, make_user, teacher, 2)
        assignment = await _assignment(db_session, make_exercise, teacher)

        counts = await assign_to(db_session, admin, assignment.id, classroom_ids=[classroom.id])

        assert counts == {"classrooms": 1, "students": 2}

    @pytest.mark.asyncio
    async def test_other_teacher_cannot_see_assignment(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        other = await make_user("Other", role="teacher")
        assignment = await _assignment(db_session, make_exercise, teacher)

        with pytest.raises(NotFoundError):
            await get_assignment(db_session, other, assignment.id)
        with pytest.raises(NotFoundError):
            await delete_assignment(db_session, other, assignment.id)

    @pytest.mark.asyncio
    async def test_delete_removes_dependent_rows(self, db_session: AsyncSession, make_user, make_exercise):
        teacher = await make_user("Teacher", role="teacher")
        classroom, _ = await _classroom_with_students(db_session, make_user, teacher, 2)
        loner = await make_user("Loner")
        assignment = await _assignment(db_session, make_exercise, teacher)
        await assign_to(db_session, teacher, assignment.id, classroom_ids=[classroom.id], student_ids=[loner.id])

        await delete_assignment(db_session, teacher, assignment.id)

        for model in (AssignmentExercise, AssignmentClassroom, AssignmentStudent, AssignmentSubmission):
            assert await _count(db_session, model, assignment_id=assignment.id) == 0
        with pytest.raises(NotFoundError):
            await get_assignment(db_session, teacher, assignment.id)
