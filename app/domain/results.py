from __future__ import annotations

import functools
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, ParamSpec, TypeVar

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


class ErrorCode(StrEnum):
    REQUIRED_NAME = "REQUIRED_NAME"
    REQUIRED_EMAIL = "REQUIRED_EMAIL"
    REQUIRED_PASSWORD = "REQUIRED_PASSWORD"
    REQUIRED_SLUG = "REQUIRED_SLUG"
    INVALID_EMAIL = "INVALID_EMAIL"
    INVALID_SLUG = "INVALID_SLUG"
    PASSWORD_TOO_SHORT = "PASSWORD_TOO_SHORT"
    PASSWORD_WEAK = "PASSWORD_WEAK"

    EMAIL_EXISTS = "EMAIL_EXISTS"
    SLUG_EXISTS = "SLUG_EXISTS"
    ALREADY_MEMBER = "ALREADY_MEMBER"
    INVITATION_EXISTS = "INVITATION_EXISTS"

    PARENT_NOT_FOUND = "PARENT_NOT_FOUND"
    CIRCULAR_REFERENCE = "CIRCULAR_REFERENCE"
    CIRCULAR_HIERARCHY = "CIRCULAR_HIERARCHY"
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"
    INVITATION_NOT_PENDING = "INVITATION_NOT_PENDING"

    HAS_SUBORDINATES = "HAS_SUBORDINATES"
    HAS_USERS = "HAS_USERS"
    HAS_CHILDREN = "HAS_CHILDREN"
    CANNOT_REMOVE_OWNER = "CANNOT_REMOVE_OWNER"
    CANNOT_CHANGE_OWNER_ROLE = "CANNOT_CHANGE_OWNER_ROLE"

    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"

    CREATE_ERROR = "CREATE_ERROR"
    UPDATE_ERROR = "UPDATE_ERROR"
    DELETE_ERROR = "DELETE_ERROR"
    FETCH_ERROR = "FETCH_ERROR"
    UPDATE_STATUS_ERROR = "UPDATE_STATUS_ERROR"
    BAN_ERROR = "BAN_ERROR"
    UNBAN_ERROR = "UNBAN_ERROR"
    ADD_MEMBER_ERROR = "ADD_MEMBER_ERROR"
    REMOVE_MEMBER_ERROR = "REMOVE_MEMBER_ERROR"
    UPDATE_ROLE_ERROR = "UPDATE_ROLE_ERROR"
    TRANSFER_ERROR = "TRANSFER_ERROR"
    INVITE_ERROR = "INVITE_ERROR"


INFRASTRUCTURE_CODES = frozenset(
    {
        ErrorCode.CREATE_ERROR,
        ErrorCode.UPDATE_ERROR,
        ErrorCode.DELETE_ERROR,
        ErrorCode.FETCH_ERROR,
        ErrorCode.UPDATE_STATUS_ERROR,
        ErrorCode.BAN_ERROR,
        ErrorCode.UNBAN_ERROR,
        ErrorCode.ADD_MEMBER_ERROR,
        ErrorCode.REMOVE_MEMBER_ERROR,
        ErrorCode.UPDATE_ROLE_ERROR,
        ErrorCode.TRANSFER_ERROR,
        ErrorCode.INVITE_ERROR,
    }
)


@dataclass(frozen=True)
class ValidationResult:
    success: bool
    code: ErrorCode | None = None
    error: str | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return _OK

    @classmethod
    def fail(cls, code: ErrorCode, error: str) -> ValidationResult:
        return cls(success=False, code=code, error=error)


_OK = ValidationResult(success=True)


class ActionResult(BaseModel, Generic[T]):
    """Uniform outcome of every service operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: T | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> ActionResult[Any]:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode | str, error: str) -> ActionResult[Any]:
        return cls(success=False, code=str(code), error=error)

    @classmethod
    def from_validation(cls, result: ValidationResult) -> ActionResult[Any]:
        if result.success:
            return cls(success=True)
        return cls(
            success=False,
            code=str(result.code) if result.code is not None else None,
            error=result.error,
        )


class PaginatedResult(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def build(cls, items: list[Any], total: int, page: int, page_size: int) -> PaginatedResult[Any]:
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )


def service_boundary(
    code: ErrorCode,
) -> Callable[[Callable[P, ActionResult[Any]]], Callable[P, ActionResult[Any]]]:
    """Turn any unexpected fault raised by a service operation into ``code``."""

    def decorator(func: Callable[P, ActionResult[Any]]) -> Callable[P, ActionResult[Any]]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> ActionResult[Any]:
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                logger.exception("%s failed with %s", func.__qualname__, code)
                return ActionResult.fail(code, str(exc) or code.value)

        return wrapper

    return decorator
