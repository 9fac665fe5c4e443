"""Auth router for account endpoints.

Endpoints:
    POST /auth/register          - Create an account, returns user + token
    POST /auth/login             - Exchange email/password for a token
    POST /auth/logout            - Client-side logout acknowledgement
    GET  /auth/profile           - Current user's profile
    GET  /auth/profile/{user_id} - Another user's public profile
    PUT  /auth/profile           - Update username/avatar
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from parley.errors import NotFound
from parley.responses import ok
from parley.store import ChatStore, UserPublic

from .dependencies import current_user, get_gate, get_store
from .schemas import LoginRequest, ProfileUpdate, RegisterRequest
from .service import IdentityGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=201)
async def register(body: RegisterRequest, gate: IdentityGate = Depends(get_gate)) -> JSONResponse:
    """Create an account and log it in.

    Returns 409 when the username or email is already taken.
    """
    user = gate.register(body.username, body.email, body.password)
    return ok(
        "User registered successfully",
        {"user": user.public(), "token": gate.issue_token(user.id)},
        status_code=201,
    )


@router.post("/login")
async def login(body: LoginRequest, gate: IdentityGate = Depends(get_gate)) -> JSONResponse:
    user = gate.login(body.email, body.password)
    logger.info("[Auth] Login for user %s", user.id)
    return ok("Login successful", {"user": user.public(), "token": gate.issue_token(user.id)})


@router.post("/logout")
async def logout() -> JSONResponse:
    """Tokens are stateless; presence is cleared when the socket closes."""
    return ok("Logout successful")


@router.get("/profile")
async def my_profile(user: UserPublic = Depends(current_user)) -> JSONResponse:
    return ok("Profile retrieved successfully", user)


@router.get("/profile/{user_id}")
async def user_profile(
    user_id: str,
    _: UserPublic = Depends(current_user),
    store: ChatStore = Depends(get_store),
) -> JSONResponse:
    found = store.get_user(user_id)
    if found is None:
        raise NotFound("User not found")
    return ok("Profile retrieved successfully", found.public())


@router.put("/profile")
async def update_profile(
    body: ProfileUpdate,
    user: UserPublic = Depends(current_user),
    store: ChatStore = Depends(get_store),
) -> JSONResponse:
    updated = store.update_profile(user.id, username=body.username, avatar=body.avatar)
    return ok("Profile updated successfully", updated.public())
