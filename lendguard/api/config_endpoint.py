"""
/v1/config/risk: versioned risk configuration.

Versions are create-only. PATCH /{version}/activate swaps the active pointer.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from lendguard.core.auth import (
    ADMINS,
    CONFIG_AUTHORS,
    CONFIG_READERS,
    get_services,
    request_context,
    require_identity,
    require_roles,
)
from lendguard.schemas.identity import Identity
from lendguard.schemas.risk_config import RiskConfiguration, RiskConfigurationDraft
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import Services

router = APIRouter(prefix="/v1/config/risk", tags=["configuration"])


@router.get("", response_model=RiskConfiguration, summary="Active configuration")
async def get_active(
    _: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
) -> RiskConfiguration:
    return await services.configurations.active()


@router.get("/history", response_model=list[RiskConfiguration], summary="All versions, newest first")
async def history(
    _: Identity = Depends(require_roles(CONFIG_READERS)),
    services: Services = Depends(get_services),
) -> list[RiskConfiguration]:
    return await services.configurations.history()


@router.get("/{version}", response_model=RiskConfiguration)
async def get_version(
    version: str,
    _: Identity = Depends(require_roles(CONFIG_READERS)),
    services: Services = Depends(get_services),
) -> RiskConfiguration:
    return await services.configurations.get(version)


@router.post("", response_model=RiskConfiguration, status_code=201, summary="Create a new (inactive) version")
async def create(
    body: RiskConfigurationDraft,
    actor: Identity = Depends(require_roles(CONFIG_AUTHORS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> RiskConfiguration:
    return await services.configurations.create(body, actor, ctx)


@router.patch("/{version}/activate", response_model=RiskConfiguration)
async def activate(
    version: str,
    actor: Identity = Depends(require_roles(ADMINS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> RiskConfiguration:
    return await services.configurations.activate(version, actor, ctx)
