"""
auth/tokens.py -- JWT issuance, password verification, and cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, role, a unique jti and the issue instant. Verification
       returns None on any failure -- the route layer turns that into a 401.

       jti is the handle the revocation ledger stores; the token itself is
       never persisted. iat is written as a float epoch rather than whole
       seconds. A revoke-all marker compares iat against its cutoff with
       microsecond precision, so a token issued just after a password change
       must not round down to a moment before it.

  Passwords: bcrypt directly. _DUMMY_HASH lets verify_account_password()
       spend the same bcrypt work when the account does not exist, so
       response time does not reveal which emails are registered.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import Account
from core.config import get_settings

logger = logging.getLogger("lockgate.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("lockgate_timing_dummy")


def verify_account_password(account: Account | None, password: str) -> bool:
    """Check a login password with timing equalization.

    Always runs bcrypt, against _DUMMY_HASH when there is no account or no
    local password. Returns False in those cases.
    """
    if account is None or account.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, account.hashed_password)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def new_token_id() -> str:
    """Return a fresh 128-bit jti."""
    return secrets.token_hex(16)


def create_access_token(account_id: int, email: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for the account.

    Args:
        account_id:     Numeric account ID stored in the DB.
        email:          Stored as the JWT subject claim.
        role:           Account role ("admin" or "user").
        expire_seconds: Token lifetime. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": email,
        "user_id": account_id,
        "role": role,
        "jti": new_token_id(),
        "iat": issued_at.timestamp(),
        "exp": issued_at + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    A payload without user_id, role, jti or iat is treated as invalid: the
    revocation check needs the last two.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if any(claim not in payload for claim in ("user_id", "role", "jti", "iat", "exp")):
        return None
    return payload


def token_issued_at(payload: dict) -> datetime:
    return datetime.fromtimestamp(float(payload["iat"]), tz=timezone.utc)


def token_expires_at(payload: dict) -> datetime:
    return datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
