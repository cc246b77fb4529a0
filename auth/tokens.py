"""
auth/tokens.py -- Signed session tokens (JWT) and the auth cookie.

Security design decisions:
  JWT: python-jose with HS256 only. Tokens are signed with JWT_SECRET and carry
       the user's id, username (sub) and role, plus iat and exp. The lifetime
       is fixed at 30 minutes and tokens are never refreshed.

  Expiry: checked here rather than by jose so that the boundary is exact
       (now >= exp rejects) and the reason can be logged separately from a
       bad signature. Clients see the same 401 for both.

  Stateless: nothing is written on issue and there is no revocation list.
       Logging out clears the cookie on the client; a copied token stays
       valid until exp.

  JWT_SECRET: sourced from core.config.get_settings(), read once at module
       load. Rotating it invalidates every outstanding token.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import jwt
from jose.exceptions import JOSEError
from jose.utils import base64url_decode, base64url_encode

from auth.models import ROLES, Identity
from core.config import get_settings

logger = logging.getLogger("pkm.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
TOKEN_TTL = timedelta(minutes=30)
TOKEN_TTL_SECONDS = int(TOKEN_TTL.total_seconds())


class TokenStatus(str, Enum):
    VALID = "valid"
    MALFORMED = "malformed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenCheck:
    """Outcome of decode_access_token(). payload is empty unless status is VALID."""

    status: TokenStatus
    payload: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is TokenStatus.VALID

    def identity(self) -> Identity | None:
        if not self.ok:
            return None
        return Identity(id=self.payload["user_id"], username=self.payload["sub"], role=self.payload["role"])


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    *,
    now: datetime | None = None,
    secret_key: str | None = None,
) -> str:
    """Encode a signed JWT for a verified user.

    Args:
        user_id:    Numeric user id from the store.
        username:   Stored as the JWT subject claim.
        role:       "admin" or "user", trusted by the Auth Gate until exp.
        now:        Issue time. Defaults to the current UTC time.
        secret_key: Signing secret. Defaults to JWT_SECRET.
    """
    issued_at = int((now or _utcnow()).timestamp())
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "iat": issued_at,
        "exp": issued_at + TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, secret_key or _settings.jwt_secret, algorithm=_ALGORITHM)


def decode_access_token(token: str, *, now: datetime | None = None, secret_key: str | None = None) -> TokenCheck:
    """Verify a JWT and return a TokenCheck. Never raises.

    Rejects (MALFORMED) on any signature or structure problem, including a
    segment that is not canonical base64url, missing or mistyped claims, and
    unknown roles. Rejects (EXPIRED) once
    now >= exp.
    """
    if not _segments_canonical(token):
        return TokenCheck(TokenStatus.MALFORMED)
    try:
        payload = jwt.decode(
            token,
            secret_key or _settings.jwt_secret,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False, "require_exp": True, "require_iat": True, "require_sub": True},
        )
    except JOSEError:
        return TokenCheck(TokenStatus.MALFORMED)

    if not _claims_well_formed(payload):
        return TokenCheck(TokenStatus.MALFORMED)

    current = int((now or _utcnow()).timestamp())
    if current >= payload["exp"]:
        return TokenCheck(TokenStatus.EXPIRED)
    return TokenCheck(TokenStatus.VALID, payload)


def _segments_canonical(token: str) -> bool:
    """True if each of the three segments is the exact base64url encoding of its bytes.

    Base64 decoders ignore the spare low bits of a segment's last character,
    so without this check several spellings of one signature would verify.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return False
    try:
        encoded = [part.encode("ascii") for part in parts]
        return all(base64url_encode(base64url_decode(seg)) == seg for seg in encoded)
    except ValueError:
        # binascii.Error and UnicodeEncodeError are both ValueErrors
        return False


def _claims_well_formed(payload: dict) -> bool:
    user_id = payload.get("user_id")
    exp = payload.get("exp")
    return (
        isinstance(user_id, int)
        and not isinstance(user_id, bool)
        and user_id > 0
        and isinstance(payload.get("sub"), str)
        and payload.get("role") in ROLES
        and isinstance(exp, int)
        and not isinstance(exp, bool)
    )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str) -> None:
    """Write the JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS outside DEBUG mode (SECURE_COOKIES).
    max_age: matches the JWT lifetime so both expire together.
    """
    response.set_cookie(
        _settings.cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=bool(_settings.secure_cookies),
        max_age=TOKEN_TTL_SECONDS,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(
        _settings.cookie_name,
        httponly=True,
        samesite="lax",
        secure=bool(_settings.secure_cookies),
    )
