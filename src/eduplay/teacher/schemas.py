"""Pydantic schemas for teacher endpoints (classrooms, assignments, grading)."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import Field

from eduplay.schemas import CamelModel

AssignmentType = Literal["practice", "quiz", "exam", "homework"]


# --- Classrooms ---


class ClassroomCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    school_id: uuid.UUID | None = None
    grade_level: str | None = Field(None, max_length=50)
    subject: str | None = Field(None, max_length=100)


class ClassroomUpdate(CamelModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    school_id: uuid.UUID | None = None
    grade_level: str | None = Field(None, max_length=50)
    subject: str | None = Field(None, max_length=100)
    is_active: bool | None = None


class ClassroomResponse(CamelModel):
    id: uuid.UUID
    teacher_id: uuid.UUID
    name: str
    description: str | None = None
    school_id: uuid.UUID | None = None
    grade_level: str | None = None
    subject: str | None = None
    is_active: bool
    student_count: int = 0
    created_at: datetime


class ClassroomListResponse(CamelModel):
    classrooms: list[ClassroomResponse]
    total: int
    page: int
    limit: int


class AddStudentsRequest(CamelModel):
    student_ids: list[uuid.UUID] = Field(..., min_length=1)


class AddStudentsResponse(CamelModel):
    added: int


class ClassroomStudentResponse(CamelModel):
    id: uuid.UUID
    full_name: str | None = None
    display_name: str | None = None
    email: str
    avatar_url: str | None = None
    level: int
    total_xp: int
    joined_at: datetime


# --- Assignments ---


class AssignmentCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    assignment_type: AssignmentType
    exercise_ids: list[uuid.UUID] = Field(..., min_length=1)
    due_date: datetime | None = None
    total_points: int = Field(100, ge=0, le=1000)


class AssignmentUpdate(CamelModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    assignment_type: AssignmentType | None = None
    due_date: datetime | None = None
    total_points: int | None = Field(None, ge=0, le=1000)
    is_published: bool | None = None


class AssignmentExerciseResponse(CamelModel):
    id: uuid.UUID
    title: str
    difficulty: str | None = None
    points: int
    order_index: int | None = None


class AssignmentResponse(CamelModel):
    id: uuid.UUID
    teacher_id: uuid.UUID
    title: str
    description: str | None = None
    assignment_type: str
    due_date: datetime | None = None
    total_points: int
    is_published: bool
    created_at: datetime
    updated_at: datetime


class AssignmentDetailResponse(AssignmentResponse):
    exercises: list[AssignmentExerciseResponse] = []


class AssignmentListResponse(CamelModel):
    assignments: list[AssignmentResponse]
    total: int
    page: int
    limit: int


class AssignRequest(CamelModel):
    classroom_ids: list[uuid.UUID] = []
    student_ids: list[uuid.UUID] = []


class AssignedCounts(CamelModel):
    classrooms: int
    students: int


class AssignResponse(CamelModel):
    assigned: AssignedCounts


# --- Submissions & grading ---


class SubmissionResponse(CamelModel):
    id: uuid.UUID
    assignment_id: uuid.UUID
    student_id: uuid.UUID
    student_name: str
    status: str
    score: float | None = None
    feedback: str | None = None
    submitted_at: datetime | None = None
    graded_at: datetime | None = None
    assignment_title: str | None = None


class SubmissionDetailResponse(SubmissionResponse):
    total_points: int
    graded_by: uuid.UUID | None = None
    grader_name: str | None = None
    percentage: float | None = None
    letter_grade: str | None = None


class GradeRequest(CamelModel):
    score: float = Field(..., ge=0)
    feedback: str | None = Field(None, max_length=5000)


class GradeResponse(CamelModel):
    id: uuid.UUID
    assignment_id: uuid.UUID
    student_id: uuid.UUID
    status: str
    score: float
    total_points: int
    percentage: float
    letter_grade: str
    feedback: str | None = None
    graded_at: datetime


class FeedbackRequest(CamelModel):
    feedback: str = Field(..., min_length=1, max_length=5000)


class FeedbackResponse(CamelModel):
    id: uuid.UUID
    feedback: str | None = None
