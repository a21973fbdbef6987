"""
/v1/auth: login, token refresh, password change, registration, logout.

Login failures come back from the service as Outcomes; they are raised here
so the exception handlers render them (401 / 403 with lockedUntil).
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from lendguard.core.auth import (
    ADMINS,
    current_claims,
    get_services,
    request_context,
    require_identity,
    require_roles,
)
from lendguard.schemas.identity import (
    ChangePasswordRequest,
    Identity,
    IdentityPublic,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    TokenClaims,
    TokenResponse,
)
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import Services

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Exchange email + password for a bearer token",
    responses={401: {"description": "Invalid credentials"}, 403: {"description": "Account locked"}},
)
async def login(
    body: LoginRequest,
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> LoginResponse:
    outcome = await services.accounts.login(body.email, body.password, ctx)
    return outcome.unwrap()


@router.post("/refresh", response_model=TokenResponse, summary="Re-mint a token for the current claims")
async def refresh(
    claims: TokenClaims = Depends(current_claims),
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
) -> TokenResponse:
    token, expires_at = services.tokens.refresh(claims)
    logger.info("token_refreshed", identity_id=identity.id)
    return TokenResponse(token=token, expires_at=expires_at)


@router.post("/change-password", summary="Change the caller's password")
async def change_password(
    body: ChangePasswordRequest,
    claims: TokenClaims = Depends(current_claims),
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> dict:
    outcome = await services.accounts.change_password(claims, body.current_password, body.new_password, ctx)
    outcome.unwrap()
    return {"message": "Password changed successfully"}


@router.post("/register", response_model=IdentityPublic, status_code=201, summary="Create an identity (ADMIN)")
async def register(
    body: RegisterRequest,
    actor: Identity = Depends(require_roles(ADMINS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> IdentityPublic:
    return await services.accounts.register(body, actor, ctx)


@router.post("/logout", summary="Record a logout; the token stays valid until it expires")
async def logout(
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> dict:
    await services.accounts.logout(identity, ctx)
    return {"message": "Logged out"}


@router.get("/me", response_model=IdentityPublic)
async def me(identity: Identity = Depends(require_identity)) -> IdentityPublic:
    return identity.public()
