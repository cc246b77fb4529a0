"""
auth/passwords.py -- bcrypt password hashing and credential verification.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.

72-byte limit: bcrypt only ever looked at the first 72 bytes of a password,
and current releases raise instead of truncating. _encode() applies the
truncation explicitly, identically for hashing and verifying, so behavior
does not depend on the installed bcrypt version.

Both hash_password() and verify_password() are CPU-bound (cost factor 10).
Async callers must run them through run_in_threadpool(); sync FastAPI handlers
are already executed in the thread pool.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import EncodingError, MalformedHashError
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("pkm.auth")

_MAX_PASSWORD_BYTES = 72
_BCRYPT_RE = re.compile(r"^\$2[abxy]?\$\d{2}\$[./A-Za-z0-9]{53}$")


def _encode(plain: str) -> bytes:
    if not isinstance(plain, str):
        raise EncodingError()
    try:
        return plain.encode("utf-8")[:_MAX_PASSWORD_BYTES]
    except UnicodeEncodeError as exc:
        # Lone surrogates and similar un-encodable text
        raise EncodingError() from exc


def looks_like_hash(value: object) -> bool:
    """Return True if value has the shape of a bcrypt hash ($2a$/$2b$/$2y$)."""
    return isinstance(value, str) and _BCRYPT_RE.match(value) is not None


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the plaintext password.

    Raises EncodingError if plain is not encodable text.
    """
    salt = bcrypt.gensalt(rounds=rounds or get_settings().bcrypt_rounds)
    try:
        return bcrypt.hashpw(_encode(plain), salt).decode("ascii")
    except ValueError as exc:
        raise EncodingError() from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Mismatch returns False. A hash that is not a bcrypt encoding raises
    MalformedHashError instead of quietly failing, so corrupted or legacy
    plaintext rows are visible in the logs.
    """
    candidate = _encode(plain)
    if not looks_like_hash(hashed):
        raise MalformedHashError()
    try:
        return bcrypt.checkpw(candidate, hashed.encode("ascii"))
    except ValueError as exc:
        raise MalformedHashError() from exc


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than later ones. Verified against whenever the username does not
# exist so response time does not reveal which usernames are registered.
_DUMMY_HASH: str = hash_password("pkm_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Check a username/password pair. Returns the User on success, None otherwise.

    bcrypt runs whether or not the user exists:
    - Unknown username: verified against _DUMMY_HASH (same cost as a real check)
    - Wrong password: verified against the real hash (same cost)

    A row whose password column is not a bcrypt hash fails the login. Such
    rows are fixed by `python main.py migrate-passwords`, never here.
    """
    user = store.find_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    try:
        matched = verify_password(password, user.hashed_password)
    except MalformedHashError:
        logger.warning(
            "User id=%s has a non-bcrypt password value; run 'python main.py migrate-passwords'",
            user.id,
        )
        verify_password(password, _DUMMY_HASH)
        return None
    return user if matched else None
