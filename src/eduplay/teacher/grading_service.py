"""Grading and feedback on assignment submissions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.database import atomic
from eduplay.db.models import Assignment, AssignmentSubmission, User
from eduplay.errors import NotFoundError, ValidationError, translate_errors
from eduplay.notifications.service import create_notification
from eduplay.teacher.assignment_service import get_owned_assignment, submission_row

logger = logging.getLogger(__name__)

# (minimum percentage, letter), highest first
GRADE_THRESHOLDS = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))


def calculate_letter_grade(percentage: float) -> str:
    for threshold, letter in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return letter
    return "F"


def calculate_percentage(score: float, total_points: int) -> float:
    if total_points <= 0:
        return 0.0
    return round(score / total_points * 100, 2)


async def _get_submission(
    db: AsyncSession, actor: User, submission_id: uuid.UUID
) -> tuple[AssignmentSubmission, Assignment]:
    result = await db.execute(select(AssignmentSubmission).where(AssignmentSubmission.id == submission_id))
    submission = result.scalar_one_or_none()
    if submission is None:
        raise NotFoundError("Submission not found")
    try:
        assignment = await get_owned_assignment(db, actor, submission.assignment_id)
    except NotFoundError:
        raise NotFoundError("Submission not found") from None
    return submission, assignment


@translate_errors("fetch submission")
async def get_submission_details(db: AsyncSession, actor: User, submission_id: uuid.UUID) -> dict[str, Any]:
    """One submission with its student, assignment and grader; graded work carries its grade."""
    submission, assignment = await _get_submission(db, actor, submission_id)
    student = await db.get(User, submission.student_id)
    grader = await db.get(User, submission.graded_by) if submission.graded_by is not None else None

    details = submission_row(
        submission,
        student,
        assignment_title=assignment.title,
        total_points=assignment.total_points,
        graded_by=submission.graded_by,
        grader_name=(grader.full_name or grader.display_name or grader.email) if grader else None,
        percentage=None,
        letter_grade=None,
    )
    if submission.score is not None:
        percentage = calculate_percentage(float(submission.score), assignment.total_points)
        details["percentage"] = percentage
        details["letter_grade"] = calculate_letter_grade(percentage)
    return details


@translate_errors("grade submission")
async def grade_submission(
    db: AsyncSession,
    actor: User,
    assignment_id: uuid.UUID,
    submission_id: uuid.UUID,
    score: float,
    feedback: str | None = None,
) -> dict[str, Any]:
    """Record a score and feedback, mark the submission graded and notify the student.

    The score must lie within ``0..total_points`` of the assignment.
    """
    submission, assignment = await _get_submission(db, actor, submission_id)
    if submission.assignment_id != assignment_id:
        raise NotFoundError("Submission not found")
    if not 0 <= score <= assignment.total_points:
        raise ValidationError(f"Score must be between 0 and {assignment.total_points}")

    percentage = calculate_percentage(score, assignment.total_points)
    letter_grade = calculate_letter_grade(percentage)
    now = datetime.now(timezone.utc)

    async with atomic(db):
        submission.score = Decimal(str(score))
        submission.feedback = feedback
        submission.status = "graded"
        submission.graded_by = actor.id
        submission.graded_at = now
        submission.updated_at = now
        await db.flush()

        await create_notification(
            db,
            submission.student_id,
            "exercise_feedback",
            "Assignment graded",
            f"Your submission for '{assignment.title}' was graded: {letter_grade} ({percentage}%)",
            {
                "assignmentId": str(assignment.id),
                "submissionId": str(submission.id),
                "score": score,
                "letterGrade": letter_grade,
            },
        )

    logger.info(
        "Submission %s graded by %s: %s/%d (%s)", submission_id, actor.id, score, assignment.total_points, letter_grade
    )
    return {
        "id": submission.id,
        "assignment_id": assignment.id,
        "student_id": submission.student_id,
        "status": submission.status,
        "score": score,
        "total_points": assignment.total_points,
        "percentage": percentage,
        "letter_grade": letter_grade,
        "feedback": feedback,
        "graded_at": now,
    }


@translate_errors("add feedback")
async def add_feedback(
    db: AsyncSession, actor: User, submission_id: uuid.UUID, feedback: str
) -> AssignmentSubmission:
    """Attach feedback to a submission without changing its grade."""
    if not feedback.strip():
        raise ValidationError("Feedback cannot be empty")
    submission, _ = await _get_submission(db, actor, submission_id)
    submission.feedback = feedback
    submission.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return submission
