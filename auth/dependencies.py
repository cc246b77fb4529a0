"""
auth/dependencies.py -- FastAPI Depends() helpers: the Auth Gate and role checks.

Token sources, checked in priority order:
  1. Cookie ("auth") -- set by the login flow.
  2. Authorization: Bearer <token> header -- API clients.

Validation steps (short-circuit on the first failure):
  no token -> signature/structure -> expiry -> Identity from claims.

The Identity comes from the token claims, not from a store lookup. This is a
deliberate choice: no database round-trip per request, at the cost of role
changes only taking effect at the user's next login (30 minutes at most).
The gate therefore works even while the credential store is unavailable.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises AuthenticationError (401).
require_role(role) / require_admin raise AuthorizationError (403).

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from fastapi import Depends, Request

from auth.errors import AuthenticationError, AuthorizationError, BackendUnavailableError
from auth.models import ROLE_ADMIN, Identity
from auth.store import UserStore
from auth.tokens import TokenStatus, decode_access_token
from core.config import get_settings

logger = logging.getLogger("pkm.auth")

_BEARER_SCHEME = "bearer"
_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class Access(str, Enum):
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"


def extract_token(request: Request) -> Optional[str]:
    """Return the candidate token from the auth cookie, else the Bearer header."""
    token = request.cookies.get(get_settings().cookie_name)
    if token:
        return token
    # "Bearer" in any case, then any run of whitespace (space or tab) before the token.
    parts = request.headers.get("Authorization", "").split(None, 1)
    if len(parts) == 2 and parts[0].lower() == _BEARER_SCHEME:
        return parts[1].strip() or None
    return None


def wants_html(request: Request, *, form_counts: bool = False) -> bool:
    """True if the client declared it accepts HTML.

    Decides between redirects / HTML fragments and JSON for a rejected or
    signed-in caller. form_counts: also treat a form-encoded request body as a
    browser client (POST /login, where the browser submits the login form).
    """
    if "text/html" in request.headers.get("accept", ""):
        return True
    if form_counts:
        content_type = request.headers.get("content-type", "")
        return any(t in content_type for t in _FORM_TYPES)
    return False


def try_get_current_user(request: Request) -> Optional[Identity]:
    """Resolve the caller's Identity, or None. Never raises.

    On success the Identity is also attached to request.state.user for
    downstream handlers and templates.
    """
    token = extract_token(request)
    if token is None:
        return None

    check = decode_access_token(token)
    if not check.ok:
        # Logged for operators only; the client response is the same for both.
        if check.status is TokenStatus.EXPIRED:
            logger.info("Rejected expired token on %s %s", request.method, request.url.path)
        else:
            logger.warning("Rejected malformed token on %s %s", request.method, request.url.path)
        return None

    identity = check.identity()
    request.state.user = identity
    return identity


def get_current_user(request: Request) -> Identity:
    """Require authentication. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: Identity = Depends(get_current_user)): ...
    """
    identity = try_get_current_user(request)
    if identity is None:
        raise AuthenticationError()
    return identity


def check_role(identity: Identity, role: str) -> Access:
    """Compare the resolved role against the role an action requires."""
    return Access.ALLOWED if identity.role == role else Access.FORBIDDEN


def require_role(role: str) -> Callable[..., Identity]:
    """Build a dependency that requires authentication and the given role.

    401 when unauthenticated, 403 when the role does not match. The check runs
    before the handler body, so a 403 never depends on whether the target
    resource exists.
    """

    def dependency(identity: Identity = Depends(get_current_user)) -> Identity:
        if check_role(identity, role) is Access.FORBIDDEN:
            logger.info("User id=%s (role=%s) denied %s-only action", identity.id, identity.role, role)
            raise AuthorizationError()
        return identity

    dependency.__name__ = f"require_{role}"
    return dependency


require_admin = require_role(ROLE_ADMIN)


def get_user_store(request: Request) -> UserStore:
    """Return the credential store from app.state, or raise BackendUnavailableError (503).

    The store is None when BACKEND_ENABLED=false or when initialization failed
    or timed out at startup.
    """
    store: Optional[UserStore] = getattr(request.app.state, "user_store", None)
    if store is None:
        raise BackendUnavailableError()
    return store
