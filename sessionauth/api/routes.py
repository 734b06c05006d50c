from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from sessionauth.api.cookies import RefreshCookie
from sessionauth.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    PrincipalResponse,
)
from sessionauth.logging import get_logger
from sessionauth.service.auth import AuthResult
from sessionauth.service.context import RequestContext
from sessionauth.service.errors import ValidationError
from sessionauth.service.runtime import get_runtime
from sessionauth.service.validation import validate_login_request
from sessionauth.storage.models import User

logger = get_logger(__name__)

# handlers are plain ``def``: FastAPI runs them on its worker threads, which
# matches the blocking store calls underneath
router = APIRouter(prefix="/api/auth", tags=["auth"])


def _request_context(request: Request) -> RequestContext:
    remote_addr = request.client.host if request.client else None
    return RequestContext.from_headers(request.headers, remote_addr)


def _refresh_cookie() -> RefreshCookie:
    return RefreshCookie(get_runtime().settings)


def _auth_envelope(result: AuthResult) -> Envelope:
    return Envelope(
        status="ok",
        data=AuthResponse(
            access_token=result.access_token,
            expires_in=result.expires_in,
            username=result.username,
        ),
    )


def require_principal(authorization: Optional[str] = Header(None)) -> User:
    return get_runtime().auth.authenticate_bearer(authorization)


@router.post("/login", response_model=Envelope)
def login(body: LoginRequest, request: Request, response: Response):
    """Exchange credentials for an access token and a refresh cookie.

    Raises:
        400: If the username or password does not pass validation
        401: If the credentials are wrong or the account is locked/disabled
    """
    checked = validate_login_request(body.username, body.password)
    if not checked.ok:
        raise ValidationError("invalid login request", detail=checked.errors)
    runtime = get_runtime()
    result = runtime.auth.login(
        body.username,
        body.password,
        body.remember_me,
        context=_request_context(request),
    )
    _refresh_cookie().set(response, result.refresh_token, result.refresh_expires_at)
    return _auth_envelope(result)


@router.post("/refresh", response_model=Envelope)
def refresh(request: Request, response: Response):
    cookie = _refresh_cookie()
    result = get_runtime().auth.refresh(
        cookie.read(request), context=_request_context(request)
    )
    cookie.set(response, result.refresh_token, result.refresh_expires_at)
    return _auth_envelope(result)


@router.post("/logout", status_code=204)
def logout(request: Request):
    cookie = _refresh_cookie()
    get_runtime().auth.logout(cookie.read(request))
    response = Response(status_code=204)
    cookie.clear(response)
    return response


@router.post("/logout-all", status_code=204)
def logout_all(request: Request):
    """Revoke every session of the user owning the presented refresh cookie."""
    cookie = _refresh_cookie()
    get_runtime().auth.logout_all(cookie.read(request))
    response = Response(status_code=204)
    cookie.clear(response)
    return response


@router.get("/me", response_model=Envelope)
def me(principal: User = Depends(require_principal)):
    return Envelope(
        status="ok",
        data=PrincipalResponse(username=principal.username, role=principal.role),
    )
