"""FastAPI dependencies that expose the app's components to route handlers."""
from typing import Optional

from fastapi import Header, Request

from parley.store import ChatStore, UserPublic

from .service import IdentityGate, extract_bearer


def get_gate(request: Request) -> IdentityGate:
    return request.app.state.gate


def get_store(request: Request) -> ChatStore:
    return request.app.state.store


async def current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> UserPublic:
    """Authenticated caller of a protected endpoint.

    Raises ``Unauthenticated`` subclasses, which the app maps to 401.
    """
    return get_gate(request).authenticate(extract_bearer(authorization))
