"""
Assessment generation, pinning and review.
"""
import asyncio

import pytest

from lendguard.core.errors import ConflictError, MissingActiveConfig, NotFoundError
from lendguard.repositories.memory import MemoryAuditRepository
from lendguard.schemas.audit import (
    AUTOMATED_DECISION,
    HUMAN_REVIEW,
    MANUAL_OVERRIDE,
    AuditAction,
    AuditQuery,
    RiskLevel,
)
from lendguard.schemas.identity import Role
from lendguard.schemas.risk_config import RiskConfigurationDraft
from lendguard.schemas.risk_request import ApplicantFactors, AssessmentRequest, ReviewDecision, ReviewRequest
from lendguard.schemas.risk_response import ReviewOutcome, RiskCategory, Verdict


def _make_request(config_version=None, **factors) -> AssessmentRequest:
    fields = {"dscr": 1.4, "years_experience": 5, "collateral_ratio": 0.25}
    fields.update(factors)
    return AssessmentRequest(
        application_id="APP-1001",
        factors=ApplicantFactors(**fields),
        config_version=config_version,
    )


THREE_FACTOR = RiskConfigurationDraft(
    name="Three factor, automated",
    factor_weights={"dscr": 0.4, "experience": 0.3, "collateral": 0.3},
    threshold_low_risk=80.0,
    threshold_medium_risk=60.0,
    threshold_high_risk=40.0,
    auto_approve_threshold=80.0,
    auto_reject_threshold=40.0,
    require_human_review=False,
)

STRONG = {"dscr": 2.5, "years_experience": 25, "collateral_ratio": 0.3}


@pytest.fixture
async def officer(make_identity):
    return await make_identity()


@pytest.fixture
async def underwriter(make_identity):
    return await make_identity(email="senior@lendguard.test", role=Role.SENIOR_UNDERWRITER)


@pytest.fixture
async def seeded(services, make_identity, ctx):
    """Default v1.0 active plus an automated v2.0 that is not active."""
    admin = await make_identity(email="admin@lendguard.test", role=Role.ADMIN)
    await services.configurations.seed_default()
    await services.configurations.create(THREE_FACTOR, admin, ctx)
    return services


class TestGenerate:

    async def test_uses_active_configuration(self, seeded, officer, ctx):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)

        assert assessment.decision.config_version == "v1.0"
        assert assessment.decision.verdict == Verdict.HUMAN_REVIEW
        assert assessment.officer_id == officer.id
        assert assessment.review is None

    async def test_pinned_version(self, seeded, officer, ctx):
        assessment = await seeded.assessments.generate(_make_request("v2.0"), officer, ctx)

        assert assessment.decision.config_version == "v2.0"
        assert assessment.decision.score == 72.0
        assert assessment.decision.category == RiskCategory.MEDIUM

    async def test_unknown_pinned_version(self, seeded, officer, ctx):
        with pytest.raises(NotFoundError):
            await seeded.assessments.generate(_make_request("v7.0"), officer, ctx)

    async def test_no_active_configuration(self, services, officer, ctx):
        with pytest.raises(MissingActiveConfig):
            await services.assessments.generate(_make_request(), officer, ctx)

    async def test_creation_audited_with_decision(self, seeded, officer, ctx):
        assessment = await seeded.assessments.generate(_make_request("v2.0", **STRONG), officer, ctx)

        trail = await seeded.ledger.entity_trail("RiskAssessment", assessment.id)

        assert len(trail) == 1
        entry = trail[0]
        assert entry.action == AuditAction.CREATE
        assert entry.application_id == "APP-1001"
        assert entry.compliance_flags == [AUTOMATED_DECISION]
        assert entry.changes["verdict"] == "auto_approve"
        assert entry.changes["config_version"] == "v2.0"

    async def test_high_risk_category_audited_high(self, seeded, officer, ctx):
        assessment = await seeded.assessments.generate(
            _make_request("v2.0", dscr=0.5, years_experience=0.5, collateral_ratio=None), officer, ctx,
        )
        entry = (await seeded.ledger.entity_trail("RiskAssessment", assessment.id))[0]
        assert entry.risk_level == RiskLevel.HIGH
        # 3.0 is under the auto-reject threshold of the automated configuration
        assert entry.compliance_flags == [AUTOMATED_DECISION]
        assert entry.changes["verdict"] == "auto_reject"

    async def test_audit_failure_discards_assessment(self, seeded, officer, ctx, monkeypatch):
        async def broken_append(self, entry):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(MemoryAuditRepository, "append", broken_append)
        with pytest.raises(RuntimeError):
            await seeded.assessments.generate(_make_request(), officer, ctx)
        monkeypatch.undo()

        assert await seeded.assessments.for_application("APP-1001") == []

    async def test_each_run_is_a_new_record(self, seeded, officer, ctx, clock):
        first = await seeded.assessments.generate(_make_request(), officer, ctx)
        clock.advance(minutes=5)
        second = await seeded.assessments.generate(_make_request("v2.0"), officer, ctx)

        history = await seeded.assessments.for_application("APP-1001")

        assert [a.id for a in history] == [second.id, first.id]
        assert first.id != second.id


class TestReview:

    async def test_reject_against_auto_approve_is_override(self, seeded, officer, underwriter, ctx):
        assessment = await seeded.assessments.generate(_make_request("v2.0", **STRONG), officer, ctx)

        reviewed = await seeded.assessments.record_review(
            assessment.id,
            ReviewRequest(decision=ReviewDecision.REJECT, comments="Sector exposure limit reached"),
            underwriter,
            ctx,
        )

        assert reviewed.review.decision == ReviewDecision.REJECT
        assert reviewed.review.reviewed_by == underwriter.id
        page = await seeded.ledger.query(AuditQuery(action=AuditAction.OVERRIDE))
        assert page.pagination.total == 1
        entry = page.logs[0]
        assert entry.risk_level == RiskLevel.HIGH
        assert entry.compliance_flags == [MANUAL_OVERRIDE]
        assert entry.previous_values == {"verdict": "auto_approve"}

    async def test_approve_after_human_review(self, seeded, officer, underwriter, ctx):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)

        await seeded.assessments.record_review(
            assessment.id, ReviewRequest(decision=ReviewDecision.APPROVE, comments="OK"), underwriter, ctx,
        )

        entry = (await seeded.ledger.query(AuditQuery(action=AuditAction.APPROVE))).logs[0]
        assert entry.risk_level == RiskLevel.MEDIUM
        assert entry.compliance_flags == [HUMAN_REVIEW]

    async def test_second_review_is_conflict(self, seeded, officer, underwriter, ctx):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)
        review = ReviewRequest(decision=ReviewDecision.APPROVE, comments="OK")
        await seeded.assessments.record_review(assessment.id, review, underwriter, ctx)

        with pytest.raises(ConflictError):
            await seeded.assessments.record_review(assessment.id, review, underwriter, ctx)

    async def test_concurrent_reviews_record_exactly_one(self, seeded, officer, underwriter, ctx):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)

        results = await asyncio.gather(
            seeded.assessments.record_review(
                assessment.id, ReviewRequest(decision=ReviewDecision.APPROVE, comments="A"), underwriter, ctx,
            ),
            seeded.assessments.record_review(
                assessment.id, ReviewRequest(decision=ReviewDecision.REJECT, comments="B"), underwriter, ctx,
            ),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        winner = next(r for r in results if not isinstance(r, Exception))
        stored = await seeded.assessments.get(assessment.id, underwriter, ctx)
        assert stored.review == winner.review
        trail = await seeded.ledger.entity_trail("RiskAssessment", assessment.id)
        assert [e.action for e in trail].count(AuditAction.CREATE) == 1
        assert len([e for e in trail if e.action in (AuditAction.APPROVE, AuditAction.REJECT)]) == 1

    async def test_stale_review_is_refused_on_commit(self, seeded, officer, underwriter, ctx, clock):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)
        outcome = ReviewOutcome(
            decision=ReviewDecision.APPROVE, comments="OK", reviewed_by=underwriter.id, reviewed_at=clock(),
        )

        async with seeded.store.unit_of_work() as first, seeded.store.unit_of_work() as second:
            assert await first.assessments.attach_review(assessment.id, outcome)
            assert await second.assessments.attach_review(assessment.id, outcome)
            await first.commit()
            with pytest.raises(ValueError):
                await second.commit()

        async with seeded.store.unit_of_work() as uow:
            assert not await uow.assessments.attach_review(assessment.id, outcome)

    async def test_review_unknown_assessment(self, seeded, underwriter, ctx):
        with pytest.raises(NotFoundError):
            await seeded.assessments.record_review(
                "missing", ReviewRequest(decision=ReviewDecision.APPROVE, comments="OK"), underwriter, ctx,
            )


class TestRead:

    async def test_read_is_audited(self, seeded, officer, ctx):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)

        fetched = await seeded.assessments.get(assessment.id, officer, ctx)

        assert fetched.id == assessment.id
        reads = await seeded.ledger.query(AuditQuery(action=AuditAction.READ))
        assert reads.pagination.total == 1

    async def test_read_survives_ledger_failure(self, seeded, officer, ctx, monkeypatch):
        assessment = await seeded.assessments.generate(_make_request(), officer, ctx)

        async def broken_append(self, entry):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(MemoryAuditRepository, "append", broken_append)
        fetched = await seeded.assessments.get(assessment.id, officer, ctx)

        assert fetched.id == assessment.id

    async def test_missing_assessment(self, seeded, officer, ctx):
        with pytest.raises(NotFoundError):
            await seeded.assessments.get("missing", officer, ctx)
