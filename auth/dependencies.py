"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by the login route.
  2. Authorization: Bearer <token> header -- API clients.

After the signature checks out, the token's jti, owner and issue instant go
through RevocationService.is_revoked(). A revoked token is rejected exactly
like a forged or expired one: the caller only ever sees a 401.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_account() and raises HTTP 403 if not admin.

On success the decoded claims are left on request.state.token_claims so the
logout route can revoke the very token it was called with.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Account
from auth.revocation import RevocationService
from auth.store import AccountStore
from auth.tokens import decode_access_token, token_issued_at


def _extract_token(request: Request) -> str | None:
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def try_get_current_account(request: Request) -> Account | None:
    """Authenticate the request via cookie or Bearer token.

    Returns the Account on success, None on any failure. Never raises.
    """
    token = _extract_token(request)
    if token is None:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None

    revocations: RevocationService = request.app.state.revocations
    if revocations.is_revoked(payload["jti"], payload["user_id"], token_issued_at(payload)):
        return None

    account_store: AccountStore = request.app.state.account_store
    account = account_store.get_by_id(payload["user_id"])
    if account is None or not account.is_active:
        return None

    request.state.token_claims = payload
    return account


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return account


def require_admin(request: Request) -> Account:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    account = get_current_account(request)
    if account.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return account
