"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES: tuple[str, ...] = (ROLE_ADMIN, ROLE_USER)

# Usernames are case-sensitive and immutable once created.
USERNAME_PATTERN = r"^[a-zA-Z0-9_-]{3,50}$"


@dataclass
class User:
    """A stored account.

    hashed_password is None when the row was loaded through a projection that
    excludes the password column (UserStore.list_users). It never leaves the
    server: API responses are built from the other fields only.
    """

    username: str
    role: str = ROLE_USER  # "admin" or "user"
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Identity:
    """Request-scoped identity resolved by the Auth Gate.

    Built from the token claims, not from a store lookup, so role reflects the
    value at login time.
    """

    id: int
    username: str
    role: str
