"""Typed application errors.

Every engine operation raises one of these. Each carries an HTTP status and a
machine-readable code that the global error handler renders as
``{"success": false, "error": {"code": ..., "message": ...}}``.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class AppError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ValidationError(AppError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class UnauthorizedError(AppError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    default_code = "ALREADY_EXISTS"


class InternalError(AppError):
    status_code = 500
    default_code = "INTERNAL_ERROR"


def translate_errors(action: str) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Re-raise store failures as InternalError("Failed to <action>").

    AppError subclasses pass through unchanged.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await func(*args, **kwargs)
            except AppError:
                raise
            except SQLAlchemyError as e:
                logger.error("Store failure while trying to %s", action, exc_info=True)
                raise InternalError(f"Failed to {action}") from e

        return wrapper

    return decorator
