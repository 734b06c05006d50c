from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Optional

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 100
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100

# lower, upper, digit and one of @$!%*?& ; nothing outside those classes
_PASSWORD_PATTERN = re.compile(
    r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}"
)


@dataclass
class ValidationResult:
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_login_request(
    username: Optional[str], password: Optional[str]
) -> ValidationResult:
    """Check the shape of login credentials before any lookup happens.

    Returns every field problem at once instead of raising.
    """
    result = ValidationResult()

    if username is None or not username.strip():
        result.errors["username"] = "The username is required"
    elif not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        result.errors["username"] = (
            f"The username must contain between {USERNAME_MIN_LENGTH} and "
            f"{USERNAME_MAX_LENGTH} characters"
        )

    if password is None or not password.strip():
        result.errors["password"] = "The password is required"
    elif not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        result.errors["password"] = (
            f"The password must contain between {PASSWORD_MIN_LENGTH} and "
            f"{PASSWORD_MAX_LENGTH} characters"
        )
    elif not _PASSWORD_PATTERN.fullmatch(password):
        result.errors["password"] = (
            "The password must contain at least one uppercase letter, one "
            "lowercase letter, one number, and one special character"
        )

    return result
