"""
Risk assessments: evaluate, persist, review.

Each generate call is a new record pinned to the configuration it used.
The evaluation record and its CREATE audit entry commit together.
"""
from __future__ import annotations

import uuid

import structlog

from lendguard.core.clock import Clock, utcnow
from lendguard.core.config import Settings
from lendguard.core.errors import ConflictError, NotFoundError
from lendguard.core.metrics import RISK_EVALUATIONS
from lendguard.repositories.base import Store
from lendguard.schemas.audit import AUTOMATED_DECISION, HUMAN_REVIEW, MANUAL_OVERRIDE, AuditAction, RiskLevel
from lendguard.schemas.identity import Identity
from lendguard.schemas.risk_request import AssessmentRequest, ReviewDecision, ReviewRequest
from lendguard.schemas.risk_response import ReviewOutcome, RiskAssessment, RiskCategory, Verdict
from lendguard.scoring.engine import evaluate
from lendguard.services.audit_ledger import AuditLedger, RequestContext, build_entry
from lendguard.services.configuration_service import ConfigurationService

logger = structlog.get_logger()


def contradicts(verdict: Verdict, decision: ReviewDecision) -> bool:
    """A reviewer going against an automatic verdict."""
    return (verdict == Verdict.AUTO_APPROVE and decision == ReviewDecision.REJECT) or (
        verdict == Verdict.AUTO_REJECT and decision == ReviewDecision.APPROVE
    )


class AssessmentService:
    def __init__(
        self,
        store: Store,
        ledger: AuditLedger,
        configurations: ConfigurationService,
        settings: Settings,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._ledger = ledger
        self._configurations = configurations
        self._settings = settings
        self._clock = clock

    async def generate(self, request: AssessmentRequest, actor: Identity, ctx: RequestContext) -> RiskAssessment:
        async with self._store.unit_of_work() as uow:
            config = await self._configurations.resolve(uow, request.config_version)
            decision = evaluate(request.factors, config, engine_version=self._settings.engine_version)

            assessment = RiskAssessment(
                id=str(uuid.uuid4()),
                application_id=request.application_id,
                officer_id=actor.id,
                inputs=request.factors,
                decision=decision,
                evaluated_at=self._clock(),
            )
            await uow.assessments.add(assessment)
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=AuditAction.CREATE,
                entity_type="RiskAssessment",
                entity_id=assessment.id,
                risk_level=RiskLevel.HIGH if decision.category == RiskCategory.HIGH else RiskLevel.MEDIUM,
                flags=[HUMAN_REVIEW if decision.human_review_required else AUTOMATED_DECISION],
                changes={
                    "score": decision.score,
                    "category": decision.category.value,
                    "verdict": decision.verdict.value,
                    "config_version": decision.config_version,
                    "engine_version": decision.engine_version,
                },
                application_id=request.application_id,
            ))
            await uow.commit()

        RISK_EVALUATIONS.labels(decision.category.value, decision.verdict.value).inc()
        logger.info(
            "risk_assessment_recorded",
            assessment_id=assessment.id,
            application_id=assessment.application_id,
            config_version=decision.config_version,
        )
        return assessment

    async def get(self, assessment_id: str, actor: Identity, ctx: RequestContext) -> RiskAssessment:
        async with self._store.unit_of_work() as uow:
            assessment = await uow.assessments.get(assessment_id)
        if assessment is None:
            raise NotFoundError("RiskAssessment", assessment_id)

        await self._ledger.append_best_effort(build_entry(
            ctx,
            actor_id=actor.id,
            actor_email=actor.email,
            action=AuditAction.READ,
            entity_type="RiskAssessment",
            entity_id=assessment_id,
            risk_level=RiskLevel.LOW,
            application_id=assessment.application_id,
        ))
        return assessment

    async def for_application(self, application_id: str) -> list[RiskAssessment]:
        async with self._store.unit_of_work() as uow:
            return await uow.assessments.for_application(application_id)

    async def record_review(
        self,
        assessment_id: str,
        review: ReviewRequest,
        actor: Identity,
        ctx: RequestContext,
    ) -> RiskAssessment:
        async with self._store.unit_of_work() as uow:
            assessment = await uow.assessments.lock(assessment_id)
            if assessment is None:
                raise NotFoundError("RiskAssessment", assessment_id)
            if assessment.review is not None:
                raise ConflictError("Assessment has already been reviewed", assessment_id=assessment_id)

            verdict = assessment.decision.verdict
            if contradicts(verdict, review.decision):
                action, level, flag = AuditAction.OVERRIDE, RiskLevel.HIGH, MANUAL_OVERRIDE
            elif review.decision == ReviewDecision.APPROVE:
                action, level, flag = AuditAction.APPROVE, RiskLevel.MEDIUM, HUMAN_REVIEW
            else:
                action, level, flag = AuditAction.REJECT, RiskLevel.MEDIUM, HUMAN_REVIEW

            outcome = ReviewOutcome(
                decision=review.decision,
                comments=review.comments,
                reviewed_by=actor.id,
                reviewed_at=self._clock(),
            )
            if not await uow.assessments.attach_review(assessment_id, outcome):
                raise ConflictError("Assessment has already been reviewed", assessment_id=assessment_id)
            reviewed = assessment.model_copy(update={"review": outcome})
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=action,
                entity_type="RiskAssessment",
                entity_id=assessment_id,
                risk_level=level,
                flags=[flag],
                changes={"decision": review.decision.value, "comments": review.comments},
                previous_values={"verdict": verdict.value},
                application_id=assessment.application_id,
            ))
            await uow.commit()

        logger.info("risk_assessment_reviewed", assessment_id=assessment_id, action=action.value, by=actor.id)
        return reviewed
