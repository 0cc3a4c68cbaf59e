"""Request metadata recorded alongside security events."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request


@dataclass(frozen=True)
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "ClientInfo":
        """Resolve the client address, honouring proxy headers."""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            ip = forwarded_for.split(",")[0].strip() or None
        else:
            ip = request.headers.get("x-real-ip") or (
                request.client.host if request.client else None
            )
        return cls(ip_address=ip, user_agent=request.headers.get("user-agent"))


def get_client_info(request: Request) -> ClientInfo:
    """FastAPI dependency."""
    return ClientInfo.from_request(request)
