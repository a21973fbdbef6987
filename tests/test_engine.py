"""
Tests for the full decision engine: composite score, category, verdict,
explainability and configuration checks.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from lendguard.core.errors import IncompleteWeights
from lendguard.schemas.risk_config import RiskConfiguration
from lendguard.schemas.risk_request import ApplicantFactors
from lendguard.schemas.risk_response import BELOW_FLOOR, RiskCategory, Verdict
from lendguard.scoring.engine import (
    DEFAULT_CONFIGURATION,
    ENGINE_VERSION,
    categorize,
    evaluate,
    validate_weights,
)


def _make_config(**overrides) -> RiskConfiguration:
    """Three-factor configuration used across these tests, then override specific fields."""
    fields = {
        "version": "v2.0",
        "sequence": 2,
        "name": "Three factor",
        "factor_weights": {"dscr": 0.4, "experience": 0.3, "collateral": 0.3},
        "threshold_low_risk": 80.0,
        "threshold_medium_risk": 60.0,
        "threshold_high_risk": 40.0,
        "auto_approve_threshold": 80.0,
        "auto_reject_threshold": 40.0,
        "require_human_review": False,
    }
    fields.update(overrides)
    return RiskConfiguration(**fields)


def _make_factors(**overrides) -> ApplicantFactors:
    fields = {"dscr": 1.4, "years_experience": 5, "collateral_ratio": 0.25}
    fields.update(overrides)
    return ApplicantFactors(**fields)


class TestScore:

    def test_reference_scenario(self):
        """DSCR 1.4 (0.6), 5 years (0.6), collateral 25% (1.0) → 72.0, medium, human review."""
        decision = evaluate(_make_factors(), _make_config())

        assert decision.score == 72.0
        assert decision.category == RiskCategory.MEDIUM
        assert decision.verdict == Verdict.HUMAN_REVIEW
        assert decision.human_review_required is True
        assert decision.config_version == "v2.0"
        assert decision.engine_version == ENGINE_VERSION

    def test_deterministic(self):
        config = _make_config()
        factors = _make_factors(dscr=1.7, years_experience=12)
        runs = [evaluate(factors, config) for _ in range(5)]
        assert len({(r.score, r.category, r.verdict) for r in runs}) == 1
        assert all(r.model_dump() == runs[0].model_dump() for r in runs)

    def test_contributions_follow_configuration_order(self):
        decision = evaluate(_make_factors(), _make_config())
        assert [c.factor_name for c in decision.contributions] == ["dscr", "experience", "collateral"]

    def test_contributions_sum_to_score(self):
        decision = evaluate(_make_factors(), _make_config())
        assert round(sum(c.contribution for c in decision.contributions), 2) == decision.score

    def test_impact_is_signed(self):
        decision = evaluate(_make_factors(dscr=0.8), _make_config())
        impacts = {c.factor_name: c.impact for c in decision.contributions}
        assert impacts["dscr"] == -20.0  # 0.4 * (0.0 - 0.5) * 100
        assert impacts["collateral"] == 15.0


class TestCategory:

    def test_exactly_on_low_threshold_is_low(self):
        # 0.4*0.8 + 0.3*1.0 + 0.3*0.6 = 0.80
        decision = evaluate(
            _make_factors(dscr=1.5, years_experience=20, collateral_ratio=0.8),
            _make_config(),
        )
        assert decision.score == 80.0
        assert decision.category == RiskCategory.LOW

    def test_just_below_low_threshold_is_medium(self):
        config = _make_config()
        assert categorize(80.0, config)[0] == RiskCategory.LOW
        assert categorize(79.99, config)[0] == RiskCategory.MEDIUM

    def test_below_all_thresholds_is_high_with_note(self):
        decision = evaluate(
            _make_factors(dscr=0.5, years_experience=0.5, collateral_ratio=None),
            _make_config(),
        )
        assert decision.score == 3.0  # only experience contributes 0.3 * 0.1
        assert decision.category == RiskCategory.HIGH
        assert BELOW_FLOOR in decision.notes

    def test_between_high_and_medium(self):
        category, notes = categorize(45.0, _make_config())
        assert category == RiskCategory.HIGH
        assert notes == []


class TestVerdict:

    def test_auto_approve(self):
        decision = evaluate(
            _make_factors(dscr=2.5, years_experience=25, collateral_ratio=0.3),
            _make_config(),
        )
        assert decision.score == 100.0
        assert decision.verdict == Verdict.AUTO_APPROVE
        assert decision.human_review_required is False

    def test_auto_reject_at_threshold(self):
        # 0.4*0.0 + 0.3*0.4 + 0.3*0.6 = 0.30
        decision = evaluate(
            _make_factors(dscr=0.9, years_experience=3, collateral_ratio=0.85),
            _make_config(),
        )
        assert decision.score == 30.0
        assert decision.verdict == Verdict.AUTO_REJECT

    def test_require_human_review_overrides_score(self):
        decision = evaluate(
            _make_factors(dscr=2.5, years_experience=25, collateral_ratio=0.3),
            _make_config(require_human_review=True),
        )
        assert decision.score == 100.0
        assert decision.verdict == Verdict.HUMAN_REVIEW


class TestExplainability:

    def test_confidence_counts_only_factors_with_data(self):
        decision = evaluate(_make_factors(collateral_ratio=None), _make_config())
        assert decision.confidence == 70.0

    def test_weak_factors_become_key_risks_with_mitigations(self):
        decision = evaluate(_make_factors(dscr=0.9), _make_config())
        assert len(decision.key_risk_indicators) == 1
        assert decision.key_risk_indicators[0].startswith("dscr:")
        assert decision.mitigation_suggestions == ["Restructure repayment schedule to improve coverage"]

    def test_default_configuration_full_profile(self):
        factors = ApplicantFactors(
            credit_score=780,
            previous_defaults=0,
            monthly_income=9_000,
            monthly_expenses=4_500,
            dscr=2.2,
            debt_to_income_ratio=0.18,
            years_experience=12,
            collateral_ratio=0.5,
            market_outlook=70,
        )
        decision = evaluate(factors, DEFAULT_CONFIGURATION)
        assert decision.confidence == 100.0
        assert decision.category == RiskCategory.LOW
        # default configuration always routes to a human
        assert decision.verdict == Verdict.HUMAN_REVIEW
        assert len(decision.contributions) == 7


class TestInputGuards:

    def test_nan_factor_rejected_at_the_boundary(self):
        with pytest.raises(PydanticValidationError):
            _make_factors(dscr=float("nan"))

    def test_infinite_factor_rejected_at_the_boundary(self):
        with pytest.raises(PydanticValidationError):
            _make_factors(dscr=float("inf"))


class TestConfigurationChecks:

    def test_default_weights_are_valid(self):
        validate_weights(DEFAULT_CONFIGURATION)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(IncompleteWeights) as exc:
            evaluate(_make_factors(), _make_config(factor_weights={"dscr": 0.4, "experience": 0.3}))
        assert "sum" in exc.value.reason

    def test_unknown_factor_rejected(self):
        with pytest.raises(IncompleteWeights):
            validate_weights(_make_config(factor_weights={"dscr": 0.5, "horoscope": 0.5}))

    def test_empty_weights_rejected(self):
        with pytest.raises(IncompleteWeights):
            validate_weights(_make_config(factor_weights={}))

    def test_negative_weight_rejected(self):
        with pytest.raises(IncompleteWeights):
            validate_weights(_make_config(factor_weights={"dscr": 1.2, "experience": -0.2}))
