"""
Bearer-token authentication and role gates as FastAPI dependencies.

  require_identity    token must verify and the identity must exist and not
                      be locked; raises otherwise
  optional_identity   claims or None; never raises
  require_roles(...)  require_identity plus `role in allowed`
"""
from __future__ import annotations

from typing import Optional

import structlog
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lendguard.core.errors import AccountLocked, InsufficientRole, TokenInvalid
from lendguard.schemas.identity import Identity, Role, TokenClaims
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import Services

logger = structlog.get_logger()
security = HTTPBearer(auto_error=False)


# ── Role sets ──
AUDIT_READERS = frozenset({Role.ADMIN, Role.COMPLIANCE_OFFICER})
ENTITY_TRAIL_READERS = AUDIT_READERS | {Role.SENIOR_UNDERWRITER}
ASSESSORS = frozenset({
    Role.ADMIN,
    Role.LOAN_OFFICER,
    Role.UNDERWRITER,
    Role.SENIOR_UNDERWRITER,
    Role.RISK_ANALYST,
})
REVIEWERS = frozenset({Role.ADMIN, Role.SENIOR_UNDERWRITER, Role.UNDERWRITER})
CONFIG_READERS = frozenset({Role.ADMIN, Role.SENIOR_UNDERWRITER, Role.RISK_ANALYST, Role.COMPLIANCE_OFFICER})
CONFIG_AUTHORS = frozenset({Role.ADMIN, Role.SENIOR_UNDERWRITER})
ADMINS = frozenset({Role.ADMIN})


def get_services(request: Request) -> Services:
    return request.app.state.services


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent", "unknown"),
        session_id=request.headers.get("x-session-id", "none"),
    )


async def current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    services: Services = Depends(get_services),
) -> TokenClaims:
    if credentials is None:
        raise TokenInvalid("Missing authorization header")
    return services.tokens.verify(credentials.credentials).unwrap()


async def require_identity(
    claims: TokenClaims = Depends(current_claims),
    services: Services = Depends(get_services),
) -> Identity:
    async with services.store.unit_of_work() as uow:
        identity = await uow.identities.get(claims.id)
    if identity is None:
        raise TokenInvalid("Identity no longer exists")
    # Read-only check; the lock itself only changes on a login attempt
    if identity.locked and identity.locked_until and services.clock() < identity.locked_until:
        raise AccountLocked(identity.locked_until)
    return identity


async def optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    services: Services = Depends(get_services),
) -> Optional[TokenClaims]:
    """For endpoints that work with or without a caller. Invalid tokens count as no caller."""
    return services.tokens.optional_verify(credentials.credentials if credentials else None)


def require_roles(allowed: frozenset[Role]):
    async def dependency(identity: Identity = Depends(require_identity)) -> Identity:
        if identity.role not in allowed:
            logger.info("role_denied", identity_id=identity.id, role=identity.role.value)
            raise InsufficientRole([r.value for r in allowed], identity.role.value)
        return identity

    return dependency
