from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware UTC helper to avoid naive datetime usage."""

    return datetime.now(timezone.utc)


class SessionKind(str, Enum):
    """Refresh session lifetime class."""

    STANDARD = "standard"
    # "remember me" sessions live for remember_days instead of refresh_days
    EXTENDED = "extended"


@dataclass(frozen=True)
class User:
    id: int
    username: str
    password_hash: str
    role: str = "USER"
    active: bool = True
    locked: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None

    @property
    def role_claims(self) -> list[str]:
        return [self.role]


@dataclass
class RefreshSession:
    """Server-side record behind an opaque refresh secret.

    Only ``secret_hash`` (SHA-256 hex of the raw secret) is ever stored.
    ``revoked`` only moves from False to True.
    """

    secret_hash: str
    user_id: int
    kind: SessionKind
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime
    revoked: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_name: Optional[str] = None
    id: Optional[int] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return not self.revoked and not self.is_expired(now)

    def mark_used(self, now: datetime) -> None:
        self.last_used_at = now

    def revoke(self) -> None:
        self.revoked = True
