from __future__ import annotations

from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionauth.service.errors import ErrorCode

# codes the HTTP layer produces on its own (routing and framework errors)
_TRANSPORT_ERROR_CODES = {"unauthorized", "forbidden", "not_found", "method_not_allowed"}
_VALID_ERROR_CODES = {code.value for code in ErrorCode} | _TRANSPORT_ERROR_CODES


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class LoginRequest(BaseModel):
    """Login body; field rules are checked by ``validate_login_request``."""

    model_config = ConfigDict(populate_by_name=True)

    username: Optional[str] = None
    password: Optional[str] = None
    remember_me: bool = Field(default=False, alias="rememberMe")


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    username: str


class PrincipalResponse(BaseModel):
    username: str
    role: str
