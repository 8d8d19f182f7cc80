from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from ophthexam.core.config import get_settings


settings = get_settings()


def user_or_ip_key(request: Request) -> str:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        # Token tail keeps the key short while staying per-session.
        return f"bearer:{auth_header[-24:]}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_remote_address,
    headers_enabled=True,
    enabled=settings.rate_limit_enabled,
)
