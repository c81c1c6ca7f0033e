"""Teacher API endpoints: classrooms, assignments, submissions and grading.

Every route requires a teacher (or admin) token.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.auth.dependencies import require_teacher
from eduplay.database import get_session
from eduplay.db.models import Classroom, User
from eduplay.schemas import ApiResponse, ok
from eduplay.teacher.assignment_service import (
    assign_to,
    create_assignment,
    delete_assignment,
    get_assignment,
    list_assignments,
    list_pending_submissions,
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
    update_classroom,
)
from eduplay.teacher.grading_service import add_feedback, get_submission_details, grade_submission
from eduplay.teacher.schemas import (
    AddStudentsRequest,
    AddStudentsResponse,
    AssignedCounts,
    AssignmentCreate,
    AssignmentDetailResponse,
    AssignmentExerciseResponse,
    AssignmentListResponse,
    AssignmentResponse,
    AssignmentUpdate,
    AssignRequest,
    AssignResponse,
    ClassroomCreate,
    ClassroomListResponse,
    ClassroomResponse,
    ClassroomStudentResponse,
    ClassroomUpdate,
    FeedbackRequest,
    FeedbackResponse,
    GradeRequest,
    GradeResponse,
    SubmissionDetailResponse,
    SubmissionResponse,
)

router = APIRouter(prefix="/api/v1/teacher", tags=["Teacher"])


def _classroom_response(classroom: Classroom, student_count: int = 0) -> ClassroomResponse:
    response = ClassroomResponse.model_validate(classroom)
    response.student_count = student_count
    return response


# ── Classrooms ──


@router.post("/classrooms", status_code=201, response_model=ApiResponse[ClassroomResponse])
async def create_classroom_route(
    body: ClassroomCreate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    classroom = await create_classroom(db, user, body.model_dump())
    await db.commit()
    return ok(_classroom_response(classroom), message="Classroom created")


@router.get("/classrooms", response_model=ApiResponse[ClassroomListResponse])
async def list_classrooms_route(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    rows, total = await list_classrooms(db, user, page, limit)
    return ok(
        ClassroomListResponse(
            classrooms=[_classroom_response(c, count) for c, count in rows],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/classrooms/{classroom_id}", response_model=ApiResponse[ClassroomResponse])
async def get_classroom_route(
    classroom_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    classroom, count = await get_classroom(db, user, classroom_id)
    return ok(_classroom_response(classroom, count))


@router.put("/classrooms/{classroom_id}", response_model=ApiResponse[ClassroomResponse])
async def update_classroom_route(
    classroom_id: uuid.UUID,
    body: ClassroomUpdate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    classroom = await update_classroom(db, user, classroom_id, body.model_dump(exclude_unset=True))
    await db.commit()
    _, count = await get_classroom(db, user, classroom_id)
    return ok(_classroom_response(classroom, count), message="Classroom updated")


@router.delete("/classrooms/{classroom_id}", response_model=ApiResponse[None])
async def delete_classroom_route(
    classroom_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    await delete_classroom(db, user, classroom_id)
    await db.commit()
    return ok(None, message="Classroom deleted")


@router.get("/classrooms/{classroom_id}/students", response_model=ApiResponse[list[ClassroomStudentResponse]])
async def list_students_route(
    classroom_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    students = await list_students(db, user, classroom_id)
    return ok([ClassroomStudentResponse.model_validate(s) for s in students])


@router.post("/classrooms/{classroom_id}/students", response_model=ApiResponse[AddStudentsResponse])
async def add_students_route(
    classroom_id: uuid.UUID,
    body: AddStudentsRequest,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    added = await add_students(db, user, classroom_id, body.student_ids)
    await db.commit()
    return ok(AddStudentsResponse(added=added), message=f"{added} students added")


@router.delete("/classrooms/{classroom_id}/students/{student_id}", response_model=ApiResponse[None])
async def remove_student_route(
    classroom_id: uuid.UUID,
    student_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    await remove_student(db, user, classroom_id, student_id)
    await db.commit()
    return ok(None, message="Student removed")


# ── Assignments ──


@router.post("/assignments", status_code=201, response_model=ApiResponse[AssignmentResponse])
async def create_assignment_route(
    body: AssignmentCreate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    assignment = await create_assignment(db, user.id, body.model_dump())
    await db.commit()
    return ok(AssignmentResponse.model_validate(assignment), message="Assignment created")


@router.get("/assignments", response_model=ApiResponse[AssignmentListResponse])
async def list_assignments_route(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    assignments, total = await list_assignments(db, user, page, limit)
    return ok(
        AssignmentListResponse(
            assignments=[AssignmentResponse.model_validate(a) for a in assignments],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/assignments/{assignment_id}", response_model=ApiResponse[AssignmentDetailResponse])
async def get_assignment_route(
    assignment_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    assignment, exercises = await get_assignment(db, user, assignment_id)
    detail = AssignmentDetailResponse.model_validate(assignment)
    detail.exercises = [AssignmentExerciseResponse.model_validate(e) for e in exercises]
    return ok(detail)


@router.put("/assignments/{assignment_id}", response_model=ApiResponse[AssignmentResponse])
async def update_assignment_route(
    assignment_id: uuid.UUID,
    body: AssignmentUpdate,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    assignment = await update_assignment(db, user, assignment_id, body.model_dump(exclude_unset=True))
    await db.commit()
    return ok(AssignmentResponse.model_validate(assignment), message="Assignment updated")


@router.delete("/assignments/{assignment_id}", response_model=ApiResponse[None])
async def delete_assignment_route(
    assignment_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    await delete_assignment(db, user, assignment_id)
    await db.commit()
    return ok(None, message="Assignment deleted")


@router.post("/assignments/{assignment_id}/assign", response_model=ApiResponse[AssignResponse])
async def assign_route(
    assignment_id: uuid.UUID,
    body: AssignRequest,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    """Fan the assignment out to classrooms and/or students."""
    counts = await assign_to(db, user, assignment_id, body.classroom_ids, body.student_ids)
    await db.commit()
    return ok(AssignResponse(assigned=AssignedCounts(**counts)), message="Assignment assigned")


@router.get("/assignments/{assignment_id}/submissions", response_model=ApiResponse[list[SubmissionResponse]])
async def list_submissions_route(
    assignment_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    submissions = await list_submissions(db, user, assignment_id)
    return ok([SubmissionResponse.model_validate(s) for s in submissions])


@router.post(
    "/assignments/{assignment_id}/submissions/{submission_id}/grade",
    response_model=ApiResponse[GradeResponse],
)
async def grade_route(
    assignment_id: uuid.UUID,
    submission_id: uuid.UUID,
    body: GradeRequest,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    result = await grade_submission(db, user, assignment_id, submission_id, body.score, body.feedback)
    await db.commit()
    return ok(GradeResponse.model_validate(result), message="Submission graded")


# ── Submissions ──


@router.get("/submissions/pending", response_model=ApiResponse[list[SubmissionResponse]])
async def pending_submissions_route(
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    submissions = await list_pending_submissions(db, user)
    return ok([SubmissionResponse.model_validate(s) for s in submissions])


@router.get("/submissions/{submission_id}", response_model=ApiResponse[SubmissionDetailResponse])
async def submission_route(
    submission_id: uuid.UUID,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    details = await get_submission_details(db, user, submission_id)
    return ok(SubmissionDetailResponse.model_validate(details))


@router.post("/submissions/{submission_id}/feedback", response_model=ApiResponse[FeedbackResponse])
async def feedback_route(
    submission_id: uuid.UUID,
    body: FeedbackRequest,
    user: User = Depends(require_teacher),
    db: AsyncSession = Depends(get_session),
):
    submission = await add_feedback(db, user, submission_id, body.feedback)
    await db.commit()
    return ok(FeedbackResponse.model_validate(submission), message="Feedback added")
