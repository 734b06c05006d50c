from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import Request, Response

from sessionauth.config import Settings
from sessionauth.storage.models import utcnow


class RefreshCookie:
    """Carries the raw refresh secret in an http-only cookie.

    The cookie is scoped to the auth routes and is the only place a raw
    secret ever leaves the server.
    """

    def __init__(self, settings: Settings) -> None:
        self.name = settings.refresh_cookie_name
        self.path = settings.refresh_cookie_path
        self.secure = settings.refresh_cookie_secure
        self.samesite = settings.refresh_cookie_same_site.value

    def set(
        self,
        response: Response,
        raw_secret: str,
        expires_at: datetime,
        *,
        now: Optional[datetime] = None,
    ) -> None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        remaining = (expires_at - (now or utcnow())).total_seconds()
        response.set_cookie(
            self.name,
            raw_secret,
            max_age=max(0, int(remaining)),
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def clear(self, response: Response) -> None:
        response.set_cookie(
            self.name,
            "",
            max_age=0,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def read(self, request: Request) -> Optional[str]:
        return request.cookies.get(self.name)
