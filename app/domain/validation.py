from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from app.domain.results import ErrorCode, ValidationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
PASSWORD_MIN_LENGTH = 8


def normalize_email(email: str) -> str:
    return email.strip().lower()


def require_text(value: str | None, code: ErrorCode, error: str) -> ValidationResult:
    if value is None or not value.strip():
        return ValidationResult.fail(code, error)
    return ValidationResult.ok()


def check_email_format(email: str | None) -> ValidationResult:
    if email is None or not EMAIL_PATTERN.match(email.strip()):
        return ValidationResult.fail(ErrorCode.INVALID_EMAIL, "invalid email address")
    return ValidationResult.ok()


def check_password_strength(password: str | None) -> ValidationResult:
    if not password:
        return ValidationResult.fail(ErrorCode.REQUIRED_PASSWORD, "password is required")
    if len(password) < PASSWORD_MIN_LENGTH:
        return ValidationResult.fail(
            ErrorCode.PASSWORD_TOO_SHORT,
            f"password must be at least {PASSWORD_MIN_LENGTH} characters",
        )
    has_upper = any(ch.isupper() for ch in password)
    has_lower = any(ch.islower() for ch in password)
    has_digit = any(ch.isdigit() for ch in password)
    if not (has_upper and has_lower and has_digit):
        return ValidationResult.fail(
            ErrorCode.PASSWORD_WEAK,
            "password must contain uppercase letters, lowercase letters and digits",
        )
    return ValidationResult.ok()


def check_slug_format(slug: str | None) -> ValidationResult:
    if slug is None or not SLUG_PATTERN.match(slug):
        return ValidationResult.fail(
            ErrorCode.INVALID_SLUG,
            "slug may only contain lowercase letters, digits and hyphens",
        )
    return ValidationResult.ok()


@dataclass(frozen=True)
class Check(Generic[T]):
    """A named, read-only validator."""

    name: str
    run: Callable[[T], ValidationResult]


def run_checks(checks: Iterable[Check[T]], data: T) -> ValidationResult:
    for check in checks:
        result = check.run(data)
        if not result.success:
            logger.debug("check %s rejected input with %s", check.name, result.code)
            return result
    return ValidationResult.ok()


class ValidationChain(Generic[T]):
    """Ordered checks evaluated until the first failure.

    Checks never write, so a chain can be rebuilt or reordered per operation.
    """

    def __init__(self, *checks: Check[T]) -> None:
        self._checks: tuple[Check[T], ...] = checks

    def then(self, name: str, run: Callable[[T], ValidationResult]) -> ValidationChain[T]:
        return ValidationChain(*self._checks, Check(name, run))

    @property
    def names(self) -> list[str]:
        return [check.name for check in self._checks]

    def handle(self, data: T) -> ValidationResult:
        return run_checks(self._checks, data)
