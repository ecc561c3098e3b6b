"""
api/routes/v1/auth.py -- Login, logout, credential change and account administration.

Routes:
  POST /api/v1/auth/login                          -- password login with account lockout
  POST /api/v1/auth/logout                         -- revokes the presented token
  GET  /api/v1/auth/me                             -- current account (requires auth)
  POST /api/v1/auth/change-password                -- new password; revokes every older token
  POST /api/v1/auth/users                          -- create account (admin only)
  GET  /api/v1/auth/users/{id}                     -- account incl. lockout state (admin only)
  POST /api/v1/auth/users/{id}/revoke-sessions     -- revoke every token of an account (admin only)
  POST /api/v1/auth/users/{id}/unlock              -- clear lockout counters (admin only)

Login order matters:
  1. Lockout is checked before the password. A locked account gets 423 even
     with the right password, and a guess against a locked account is not
     counted.
  2. The password is verified with timing equalization whether or not the
     account exists.
  3. A wrong password goes through handle_failed_login(). The failure that
     reaches the threshold answers 423 right away rather than 401.
  4. A right password goes through handle_successful_login() and gets a
     fresh token.

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every response that carries a token.
  Revocation writes that fail propagate to the generic 500 handler -- a
  logout that did not revoke must not answer 200.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AccountCreate,
    AccountResponse,
    LockedAccountResponse,
    LoginFailedResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    PasswordChangeRequest,
    RevokeSessionsRequest,
    RevokeSessionsResponse,
)
from auth.dependencies import get_current_account, require_admin
from auth.lockout import LockedResponse, LockoutPolicy
from auth.models import Account, RevocationReason
from auth.revocation import RevocationService
from auth.store import AccountStore
from auth.tokens import (
    create_access_token,
    hash_password,
    set_auth_cookie,
    token_expires_at,
    verify_account_password,
)
from core.config import get_settings

_settings = get_settings()

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post(
    "/auth/login",
    response_model=LoginResponse,
    responses={401: {"model": LoginFailedResponse}, 423: {"model": LockedAccountResponse}},
)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password under the account lockout policy."""
    account_store: AccountStore = request.app.state.account_store
    policy: LockoutPolicy = request.app.state.lockout_policy
    source_address = request.client.host if request.client else None

    account = account_store.get_by_email(body.email)

    status = policy.check_lockout(account)
    if status.is_locked:
        return _locked_json(policy.locked_response(status))

    password_ok = verify_account_password(account, body.password)
    if account is None or not account.is_active:
        return _bad_credentials(policy.config.max_attempts)

    if not password_ok:
        result = policy.handle_failed_login(account, source_address)
        if result.account_locked:
            return _locked_json(policy.locked_response(policy.check_lockout(account)))
        return _bad_credentials(result.attempts_remaining)

    policy.handle_successful_login(account, source_address)
    account_store.update_last_login(account.id)
    return _token_response(account)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout")
def logout(request: Request, current_account: Account = Depends(get_current_account)) -> JSONResponse:
    """Revoke the token this request was made with and clear the cookie.

    The revocation record lives until the token's own expiry.
    """
    revocations: RevocationService = request.app.state.revocations
    claims = request.state.token_claims
    revocations.revoke(claims["jti"], current_account.id, token_expires_at(claims), RevocationReason.logout)

    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(current_account: Account = Depends(get_current_account)) -> MeResponse:
    """Return identity information for the currently authenticated account."""
    return MeResponse(user_id=current_account.id, email=current_account.email, role=current_account.role)


@router.post("/auth/change-password", response_model=LoginResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_account: Account = Depends(get_current_account),
) -> JSONResponse:
    """Replace the password and revoke every token issued before now.

    The caller's own token is revoked too; the response carries a new one
    issued after the cutoff.
    """
    account_store: AccountStore = request.app.state.account_store
    revocations: RevocationService = request.app.state.revocations

    if not verify_account_password(current_account, body.current_password):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_password", "message": "Current password is incorrect."},
        )

    account_store.update_password(current_account.id, hash_password(body.new_password))
    revocations.revoke_all_for_user(current_account.id, RevocationReason.credential_change)
    return _token_response(current_account)


# ---------------------------------------------------------------------------
# Account administration (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/users", response_model=AccountResponse, status_code=201)
async def create_account(
    request: Request,
    body: AccountCreate,
    current_account: Account = Depends(require_admin),
) -> AccountResponse:
    """Create a new account. Admin only."""
    account_store: AccountStore = request.app.state.account_store
    new_account = Account(
        email=body.email,
        role=body.role.value,
        hashed_password=hash_password(body.password),
    )
    try:
        account_id = account_store.create_account(new_account)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "An account with that email already exists."},
        ) from exc
    return _account_to_response(account_store.get_by_id(account_id))


@router.get("/auth/users/{user_id}", response_model=AccountResponse)
async def get_account(
    request: Request,
    user_id: int,
    current_account: Account = Depends(require_admin),
) -> AccountResponse:
    """Return an account with its lockout counters. Admin only."""
    account_store: AccountStore = request.app.state.account_store
    return _account_to_response(_get_account_or_404(account_store, user_id))


@router.post("/auth/users/{user_id}/revoke-sessions", response_model=RevokeSessionsResponse)
def revoke_sessions(
    request: Request,
    user_id: int,
    body: RevokeSessionsRequest,
    current_account: Account = Depends(require_admin),
) -> RevokeSessionsResponse:
    """Revoke every token the account holds. Admin only.

    Tokens the account obtains after this call are unaffected.
    """
    account_store: AccountStore = request.app.state.account_store
    revocations: RevocationService = request.app.state.revocations

    target = _get_account_or_404(account_store, user_id)
    marker = revocations.revoke_all_for_user(target.id, body.reason.value)
    return RevokeSessionsResponse(
        user_id=target.id,
        reason=marker.reason,
        revoked_before=marker.revoked_at.isoformat(),
    )


@router.post("/auth/users/{user_id}/unlock", response_model=AccountResponse)
def unlock_account(
    request: Request,
    user_id: int,
    current_account: Account = Depends(require_admin),
) -> AccountResponse:
    """Clear the failure counter and any lock. Admin only."""
    account_store: AccountStore = request.app.state.account_store
    target = _get_account_or_404(account_store, user_id)
    account_store.reset_failed_attempts(target)
    return _account_to_response(target)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _locked_json(locked: LockedResponse) -> JSONResponse:
    resp = JSONResponse(status_code=locked.status_code, content=locked.body)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _bad_credentials(attempts_remaining: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=401,
        content=LoginFailedResponse(
            error="Invalid email or password",
            attemptsRemaining=attempts_remaining,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _token_response(account: Account) -> JSONResponse:
    token = create_access_token(account.id, account.email, account.role)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            email=account.email,
            role=account.role,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _get_account_or_404(account_store: AccountStore, user_id: int) -> Account:
    account = account_store.get_by_id(user_id)
    if account is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Account not found."},
        )
    return account


def _account_to_response(account: Account | None) -> AccountResponse:
    if account is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Account not found after write."},
        )
    return AccountResponse(
        id=account.id,
        email=account.email,
        role=account.role,
        is_active=account.is_active,
        failed_attempt_count=account.failed_attempt_count,
        locked_until=account.locked_until.isoformat() if account.locked_until else None,
        created_at=account.created_at or "",
    )
