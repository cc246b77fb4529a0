"""
api/routes/users.py -- Admin user management.

Routes:
  POST   /register          -- create user (admin only)
  GET    /api/users         -- list users, no password fields (admin only)
  PUT    /api/users/{id}    -- change password and/or role (admin only)
  DELETE /api/users/{id}    -- delete user (admin only)

Every route depends on require_admin before anything else, so an
unauthenticated caller gets 401 and a non-admin gets 403 without the handler
ever touching the store. Store and bcrypt calls are blocking; these handlers
are plain `def` so FastAPI runs them in its thread pool.

A role change applies at the affected user's next login: the Auth Gate trusts
the role inside an already-issued token until it expires.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path

from api.models import DeletedUser, DeleteResponse, UserCreate, UserEnvelope, UserListResponse, UserResponse, UserUpdate
from auth.dependencies import get_user_store, require_admin
from auth.errors import NotFoundError, ValidationError
from auth.models import Identity
from auth.passwords import hash_password
from auth.store import UserStore

logger = logging.getLogger("pkm.api")

router = APIRouter()

_UserId = Annotated[int, Path(gt=0, description="Positive user id")]


@router.post("/register", response_model=UserEnvelope, status_code=201)
def register(
    body: UserCreate,
    current_user: Identity = Depends(require_admin),
    store: UserStore = Depends(get_user_store),
) -> UserEnvelope:
    """Create a user account. 409 if the username exists."""
    user = store.create(body.username, hash_password(body.password), role=body.role)
    logger.info("Admin id=%s created user id=%s", current_user.id, user.id)
    return UserEnvelope(message="User created successfully", user=UserResponse.from_user(user))


@router.get("/api/users", response_model=UserListResponse)
def list_users(
    current_user: Identity = Depends(require_admin),
    store: UserStore = Depends(get_user_store),
) -> UserListResponse:
    """List all accounts ordered by id."""
    users = [UserResponse.from_user(u) for u in store.list_users()]
    return UserListResponse(count=len(users), users=users)


@router.put("/api/users/{user_id}", response_model=UserEnvelope)
def update_user(
    body: UserUpdate,
    user_id: _UserId,
    current_user: Identity = Depends(require_admin),
    store: UserStore = Depends(get_user_store),
) -> UserEnvelope:
    """Change a user's password and/or role. Only provided fields change."""
    if body.password is None and body.role is None:
        raise ValidationError("No valid fields to update")

    password_hash = hash_password(body.password) if body.password is not None else None
    updated = store.update(user_id, password_hash=password_hash, role=body.role)
    if updated is None:
        raise NotFoundError("User not found")
    logger.info("Admin id=%s updated user id=%s", current_user.id, user_id)
    return UserEnvelope(message="User updated successfully", user=UserResponse.from_user(updated))


@router.delete("/api/users/{user_id}", response_model=DeleteResponse)
def delete_user(
    user_id: _UserId,
    current_user: Identity = Depends(require_admin),
    store: UserStore = Depends(get_user_store),
) -> DeleteResponse:
    """Permanently delete a user. Tokens already issued to them stay valid until expiry."""
    deleted = store.delete(user_id)
    if deleted is None:
        raise NotFoundError("User not found")
    logger.info("Admin id=%s deleted user id=%s", current_user.id, user_id)
    return DeleteResponse(user=DeletedUser(**deleted))
