# app/api/deps.py
"""
Request-scoped dependencies: the service container and the current user.

Authentication itself happens upstream; by the time a request reaches a
route, ``request.state.user`` holds a ``CurrentUser`` or nothing. A client
user's ``user_id`` is the id of their ``clients`` row.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.errors import AuthenticationError, PermissionDeniedError
from app.services.container import InvoicingServices

ADMIN = "admin"
CLIENT = "client"
ROLES = (ADMIN, CLIENT)


@dataclass(frozen=True)
class CurrentUser:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def label(self) -> str:
        return f"{self.role}:{self.user_id}"


class TrustedHeaderAuthMiddleware(BaseHTTPMiddleware):
    """
    Resolve ``X-User-Id`` / ``X-User-Role`` headers set by the gateway in
    front of the API into ``request.state.user``. Malformed headers leave
    the request anonymous.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.user = None
        raw_id = request.headers.get("x-user-id")
        role = (request.headers.get("x-user-role") or "").strip().lower()
        if raw_id and raw_id.strip().isdigit() and role in ROLES:
            request.state.user = CurrentUser(user_id=int(raw_id), role=role)
        return await call_next(request)


def get_services(request: Request) -> InvoicingServices:
    return request.app.state.services


def get_current_user(request: Request) -> CurrentUser:
    user: Optional[CurrentUser] = getattr(request.state, "user", None)
    if user is None:
        raise AuthenticationError("Authentication required")
    return user


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user
