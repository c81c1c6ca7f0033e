"""Shared response envelope and base schemas."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Schema serialized with camelCase keys; accepts either case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ErrorBody(BaseModel):
    code: str
    message: str


class ApiResponse(BaseModel, Generic[T]):
    """``{success, data, error}`` envelope wrapped around every payload."""

    success: bool = True
    data: T | None = None
    error: ErrorBody | None = None
    message: str | None = None


def ok(data: T, message: str | None = None) -> ApiResponse[T]:
    return ApiResponse(success=True, data=data, message=message)


def error_body(code: str, message: str) -> dict[str, object]:
    return {"success": False, "error": {"code": code, "message": message}}
