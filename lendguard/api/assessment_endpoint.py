"""
/v1/assessments: generate, fetch and review risk assessments.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from lendguard.core.auth import (
    ASSESSORS,
    REVIEWERS,
    get_services,
    request_context,
    require_identity,
    require_roles,
)
from lendguard.schemas.identity import Identity
from lendguard.schemas.risk_request import AssessmentRequest, ReviewRequest
from lendguard.schemas.risk_response import RiskAssessment
from lendguard.services.audit_ledger import RequestContext
from lendguard.services.container import Services

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/assessments", tags=["assessments"])


@router.post(
    "/generate",
    response_model=RiskAssessment,
    status_code=201,
    summary="Evaluate an application against the active (or pinned) configuration",
)
async def generate(
    body: AssessmentRequest,
    actor: Identity = Depends(require_roles(ASSESSORS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> RiskAssessment:
    logger.info(
        "risk_assessment_requested",
        application_id=body.application_id,
        config_version=body.config_version,
        caller=actor.id,
    )
    return await services.assessments.generate(body, actor, ctx)


@router.get("/application/{application_id}", response_model=list[RiskAssessment])
async def for_application(
    application_id: str,
    _: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
) -> list[RiskAssessment]:
    return await services.assessments.for_application(application_id)


@router.get("/{assessment_id}", response_model=RiskAssessment)
async def get_assessment(
    assessment_id: str,
    actor: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> RiskAssessment:
    return await services.assessments.get(assessment_id, actor, ctx)


@router.post("/{assessment_id}/review", response_model=RiskAssessment)
async def review(
    assessment_id: str,
    body: ReviewRequest,
    actor: Identity = Depends(require_roles(REVIEWERS)),
    services: Services = Depends(get_services),
    ctx: RequestContext = Depends(request_context),
) -> RiskAssessment:
    return await services.assessments.record_review(assessment_id, body, actor, ctx)
