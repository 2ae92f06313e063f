"""
Utils module - Input validation helpers.
"""

from finvault.utils.validators import (
    normalize_email,
    validate_new_password,
    validate_registration,
    validate_single_use_token,
    validate_string_safe,
)

__all__ = [
    "normalize_email",
    "validate_new_password",
    "validate_registration",
    "validate_single_use_token",
    "validate_string_safe",
]
