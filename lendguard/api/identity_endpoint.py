"""
/v1/identities: administrative account recovery.

Unlock lifts a lockout early; reset-password replaces a password without the
current one. Both are ADMIN only and audited HIGH.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from lendguard.core.auth import ADMINS, get_services, request_context, require_roles
from lendguard.schemas.identity import Identity, IdentityPublic, ResetPasswordRequest
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import Services

router = APIRouter(prefix="/v1/identities", tags=["identities"])


@router.patch(
    "/{identity_id}/unlock",
    response_model=IdentityPublic,
    summary="Lift an active lockout",
    responses={400: {"description": "Account is not locked"}, 404: {"description": "Unknown identity"}},
)
async def unlock(
    identity_id: str,
    actor: Identity = Depends(require_roles(ADMINS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> IdentityPublic:
    return await services.accounts.unlock(identity_id, actor, ctx)


@router.post("/{identity_id}/reset-password", response_model=IdentityPublic, summary="Set a new password")
async def reset_password(
    identity_id: str,
    body: ResetPasswordRequest,
    actor: Identity = Depends(require_roles(ADMINS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> IdentityPublic:
    return await services.accounts.reset_password(identity_id, body.new_password, actor, ctx)
