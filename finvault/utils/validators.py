"""
Validation Utilities
====================

Input validation functions with security focus.

Each ``check_*`` function returns a list of problems for one field so that
callers can collect field-level detail before raising a single
:class:`ValidationError`.
"""

from __future__ import annotations

import re
from typing import Final, Optional, Pattern

from finvault.core.errors import ValidationError


MIN_NAME_LENGTH: Final[int] = 2
MAX_NAME_LENGTH: Final[int] = 100
MAX_EMAIL_LENGTH: Final[int] = 255
MIN_PASSWORD_LENGTH: Final[int] = 8
MAX_PASSWORD_LENGTH: Final[int] = 128
PASSWORD_SPECIAL_CHARS: Final[frozenset[str]] = frozenset("@$!%*?&")
MIN_TOKEN_LENGTH: Final[int] = 32
MAX_TOKEN_LENGTH: Final[int] = 255

_NAME_PATTERN: Final[Pattern[str]] = re.compile(r"^[^\W\d_]+(?: [^\W\d_]+)*$")
_EMAIL_PATTERN: Final[Pattern[str]] = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)
_HEX_PATTERN: Final[Pattern[str]] = re.compile(r"^[A-Fa-f0-9]+$")

__all__ = [
    "ValidationError",
    "normalize_email",
    "check_name",
    "check_email",
    "check_password_strength",
    "check_hex_token",
    "validate_string_safe",
    "validate_registration",
    "validate_new_password",
    "validate_single_use_token",
]


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return (email or "").strip().lower()


def check_name(name: Optional[str]) -> list[str]:
    if not isinstance(name, str) or not name.strip():
        return ["Name is required"]
    name = name.strip()
    problems = []
    if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
        problems.append(
            f"Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters"
        )
    if not _NAME_PATTERN.match(name):
        problems.append("Name may only contain letters and spaces")
    return problems


def check_email(email: Optional[str]) -> list[str]:
    if not isinstance(email, str) or not email.strip():
        return ["Email is required"]
    email = normalize_email(email)
    problems = []
    if len(email) > MAX_EMAIL_LENGTH:
        problems.append(f"Email must be at most {MAX_EMAIL_LENGTH} characters")
    if not _EMAIL_PATTERN.match(email):
        problems.append("Email must be a valid address")
    return problems


def check_password_strength(password: Optional[str]) -> list[str]:
    """
    Check a new password against the strength policy.

    Policy: 8-128 characters with at least one lowercase letter, one
    uppercase letter, one digit and one of ``@$!%*?&``.
    """
    if not isinstance(password, str) or not password:
        return ["Password is required"]

    problems = []
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        problems.append(
            f"Password must be between {MIN_PASSWORD_LENGTH} and "
            f"{MAX_PASSWORD_LENGTH} characters"
        )
    if not any(c.islower() for c in password):
        problems.append("Password must contain at least one lowercase letter")
    if not any(c.isupper() for c in password):
        problems.append("Password must contain at least one uppercase letter")
    if not any(c.isdigit() for c in password):
        problems.append("Password must contain at least one digit")
    if not any(c in PASSWORD_SPECIAL_CHARS for c in password):
        problems.append("Password must contain at least one of @$!%*?&")
    return problems


def check_hex_token(token: Optional[str]) -> list[str]:
    if not isinstance(token, str) or not token:
        return ["Token is required"]
    if not MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH:
        return ["Token is malformed"]
    if not _HEX_PATTERN.match(token):
        return ["Token must be hexadecimal"]
    return []


def validate_string_safe(
    value: str,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Validate a string value for safety.

    Args:
        value: The string to validate
        min_length: Minimum allowed length
        max_length: Maximum allowed length
        allow_empty: If False, empty strings are rejected
        field_name: Name of the field for error messages

    Returns:
        Validated string

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        _raise_for(field_name, [f"{field_name} must be a string"])

    if not allow_empty and not value:
        _raise_for(field_name, [f"{field_name} cannot be empty"])

    if len(value) < min_length:
        _raise_for(field_name, [f"{field_name} must be at least {min_length} characters"])

    if len(value) > max_length:
        _raise_for(field_name, [f"{field_name} must be at most {max_length} characters"])

    # Null bytes never belong in credentials or identifiers
    if "\x00" in value:
        _raise_for(field_name, [f"{field_name} contains invalid characters"])

    return value


def validate_registration(name: str, email: str, password: str) -> None:
    """
    Validate registration input.

    Raises:
        ValidationError: With every failing field listed
    """
    _raise_if_any({
        "name": check_name(name),
        "email": check_email(email),
        "password": check_password_strength(password),
    })


def validate_new_password(password: str, field_name: str = "new_password") -> None:
    _raise_if_any({field_name: check_password_strength(password)})


def validate_single_use_token(token: str, field_name: str = "token") -> None:
    _raise_if_any({field_name: check_hex_token(token)})


def _raise_for(field_name: str, problems: list[str]) -> None:
    raise ValidationError(problems[0], fields={field_name: problems})


def _raise_if_any(results: dict[str, list[str]]) -> None:
    fields = {name: problems for name, problems in results.items() if problems}
    if fields:
        raise ValidationError("Invalid input", fields=fields)
