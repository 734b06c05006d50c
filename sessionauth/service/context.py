from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

MAX_USER_AGENT_LENGTH = 500
MAX_IP_LENGTH = 45

_DEVICE_MARKERS = (
    (("iPhone", "iPad"), "iOS Device"),
    (("Android",), "Android Device"),
    (("Windows",), "Windows PC"),
    (("Macintosh",), "Mac"),
    (("Linux",), "Linux PC"),
)


def device_label(user_agent: Optional[str]) -> str:
    """Coarse, human-readable device label derived from a User-Agent."""
    if not user_agent:
        return "Unknown"
    for markers, label in _DEVICE_MARKERS:
        if any(marker in user_agent for marker in markers):
            return label
    return "Unknown Device"


def _first_forwarded(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    return value.split(",")[0].strip() or None


@dataclass(frozen=True)
class RequestContext:
    """Diagnostic metadata recorded on a refresh session.

    Never used for authorization decisions.
    """

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_name: str = "Unknown"

    @classmethod
    def empty(cls) -> "RequestContext":
        return cls()

    @classmethod
    def from_headers(
        cls, headers: Mapping[str, str], remote_addr: Optional[str] = None
    ) -> "RequestContext":
        # header lookups are case-insensitive on Starlette headers; plain
        # dicts are normalised here
        lowered = {k.lower(): v for k, v in headers.items()}
        ip = (
            _first_forwarded(lowered.get("x-forwarded-for"))
            or _first_forwarded(lowered.get("x-real-ip"))
            or remote_addr
        )
        if ip:
            ip = ip[:MAX_IP_LENGTH]
        user_agent = lowered.get("user-agent")
        if user_agent and len(user_agent) > MAX_USER_AGENT_LENGTH:
            user_agent = user_agent[:MAX_USER_AGENT_LENGTH]
        return cls(
            ip_address=ip,
            user_agent=user_agent,
            device_name=device_label(user_agent),
        )
