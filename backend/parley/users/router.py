"""User directory endpoints.

Endpoints:
    GET /users                 - Every other account
    GET /users/me              - The caller
    GET /users/search?query=   - Substring match on username/email, excluding the caller
    GET /users/{user_id}       - One public profile
"""
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from parley.auth.dependencies import current_user, get_store
from parley.errors import NotFound, ValidationFailed
from parley.responses import ok
from parley.store import ChatStore, UserPublic

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_users(
    user: UserPublic = Depends(current_user),
    store: ChatStore = Depends(get_store),
) -> JSONResponse:
    return ok("Users retrieved successfully", store.list_users(exclude_id=user.id))


@router.get("/me")
async def me(user: UserPublic = Depends(current_user)) -> JSONResponse:
    return ok("User retrieved successfully", user)


# Declared before /{user_id} so "search" is not taken for an id.
@router.get("/search")
async def search_users(
    request: Request,
    query: str = Query(..., min_length=1),
    user: UserPublic = Depends(current_user),
    store: ChatStore = Depends(get_store),
) -> JSONResponse:
    limit = request.app.state.config.chat.user_search_limit
    term = query.strip()
    if not term:
        raise ValidationFailed("Search query is required")
    return ok("Users found", store.search_users(term, exclude_id=user.id, limit=limit))


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    _: UserPublic = Depends(current_user),
    store: ChatStore = Depends(get_store),
) -> JSONResponse:
    found = store.get_user(user_id)
    if found is None:
        raise NotFound("User not found")
    return ok("User retrieved successfully", found.public())
