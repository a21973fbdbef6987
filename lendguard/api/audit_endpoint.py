"""
/v1/audit: ledger queries, rollups and export. Read-only.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from lendguard.core.auth import (
    AUDIT_READERS,
    ENTITY_TRAIL_READERS,
    get_services,
    request_context,
    require_roles,
)
from lendguard.core.clock import as_utc
from lendguard.schemas.audit import (
    AuditAction,
    AuditExport,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    AuditSummary,
    ComplianceReport,
    RiskLevel,
    UserActivity,
)
from lendguard.schemas.identity import Identity
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import Services

router = APIRouter(prefix="/v1/audit", tags=["audit"])


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


@router.get("/logs", response_model=AuditPage, summary="Filtered, paginated audit entries, newest first")
async def list_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    action: Optional[AuditAction] = None,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    entity_id: Optional[str] = Query(None, alias="entityId"),
    application_id: Optional[str] = Query(None, alias="applicationId"),
    risk_level: Optional[RiskLevel] = Query(None, alias="riskLevel"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    page: int = 1,
    limit: Optional[int] = None,
    _: Identity = Depends(require_roles(AUDIT_READERS)),
    services: Services = Depends(get_services),
) -> AuditPage:
    query = AuditQuery(
        actor_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        application_id=application_id,
        risk_level=risk_level,
        start=_utc(start_date),
        end=_utc(end_date),
    )
    return await services.ledger.query(query, page=page, limit=limit)


@router.get(
    "/export",
    response_model=AuditExport,
    summary="Export entries as JSON or CSV",
    responses={200: {"content": {"text/csv": {}}}},
)
async def export_logs(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    fmt: Literal["json", "csv"] = Query("json", alias="format"),
    actor: Identity = Depends(require_roles(AUDIT_READERS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
):
    result = await services.ledger.export(
        AuditQuery(start=_utc(start_date), end=_utc(end_date)),
        fmt,
        actor_id=actor.id,
        actor_email=actor.email,
        ctx=ctx,
    )
    if fmt == "csv":
        return Response(
            content=result,
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="audit-logs.csv"'},
        )
    return result


@router.get("/stats/summary", response_model=AuditSummary)
async def summary(
    days: int = Query(30, ge=1, le=3650),
    _: Identity = Depends(require_roles(AUDIT_READERS)),
    services: Services = Depends(get_services),
) -> AuditSummary:
    return await services.ledger.summary(days)


@router.get("/compliance/report", response_model=ComplianceReport)
async def compliance_report(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    _: Identity = Depends(require_roles(AUDIT_READERS)),
    services: Services = Depends(get_services),
) -> ComplianceReport:
    # Default window: the last 30 days
    end = _utc(end_date) or services.clock()
    start = _utc(start_date) or end - timedelta(days=30)
    return await services.ledger.compliance_report(start, end)


@router.get("/entity/{entity_type}/{entity_id}", response_model=list[AuditLogEntry])
async def entity_trail(
    entity_type: str,
    entity_id: str,
    _: Identity = Depends(require_roles(ENTITY_TRAIL_READERS)),
    services: Services = Depends(get_services),
) -> list[AuditLogEntry]:
    return await services.ledger.entity_trail(entity_type, entity_id)


@router.get("/user/{user_id}", response_model=UserActivity)
async def user_activity(
    user_id: str,
    days: int = Query(30, ge=1, le=3650),
    _: Identity = Depends(require_roles(AUDIT_READERS)),
    services: Services = Depends(get_services),
) -> UserActivity:
    return await services.ledger.user_activity(user_id, days)
