"""
GET /v1/risk/health

Open to anyone. A valid bearer token adds the caller's identity to the
response; a missing or bad one is simply ignored.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from lendguard.core.auth import get_services, optional_identity
from lendguard.schemas.identity import TokenClaims
from lendguard.services.container import Services

router = APIRouter(prefix="/v1/risk", tags=["health"])


@router.get("/health")
async def health(
    claims: Optional[TokenClaims] = Depends(optional_identity),
    services: Services = Depends(get_services),
) -> dict:
    async with services.store.unit_of_work() as uow:
        active = await uow.configurations.active()

    body = {
        "status": "ok" if active else "degraded",
        "service": services.settings.app_name,
        "engine_version": services.settings.engine_version,
        "active_config_version": active.version if active else None,
    }
    if claims is not None:
        body["caller"] = {"id": claims.id, "role": claims.role.value}
    return body
