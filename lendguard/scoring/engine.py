"""
Risk Decision Engine

Orchestrates:
  1. Weight check against the pinned configuration
  2. Factor sub-scores, in the configuration's factor order
  3. Weighted composite score (0-100, higher = lower risk)
  4. Category + verdict assignment
  5. Explainability (contributions, impact, confidence, indicators)

Pure: no I/O, no clock. Same factors + same configuration version always
give the same score, category and verdict.
"""
from __future__ import annotations

import time

import structlog

from lendguard.core.errors import IncompleteWeights
from lendguard.schemas.risk_config import RiskConfiguration
from lendguard.schemas.risk_request import ApplicantFactors
from lendguard.schemas.risk_response import (
    BELOW_FLOOR,
    FactorContribution,
    RiskCategory,
    RiskDecision,
    Verdict,
)
from lendguard.scoring.factors import FACTOR_RULES, MITIGATIONS, FactorResult

logger = structlog.get_logger()

ENGINE_VERSION = "2.0.0"
WEIGHT_TOLERANCE = 1e-6
KEY_RISK_THRESHOLD = 0.3


# ═══════════════════════════════════════════════════════════════
# Default configuration, seeded as v1.0 and activated on first start
# ═══════════════════════════════════════════════════════════════
DEFAULT_CONFIGURATION = RiskConfiguration(
    version="v1.0",
    sequence=1,
    name="Default Risk Configuration",
    description="Baseline weighting across bureau, affordability, employment and collateral",
    factor_weights={
        "credit_history": 0.25,
        "income_stability": 0.15,
        "dscr": 0.15,
        "experience": 0.15,
        "collateral": 0.15,
        "debt_to_income": 0.10,
        "market_conditions": 0.05,
    },
    threshold_low_risk=70.0,
    threshold_medium_risk=50.0,
    threshold_high_risk=30.0,
    auto_approve_threshold=75.0,
    auto_reject_threshold=30.0,
    require_human_review=True,
    retention_period_months=84,
    is_active=True,
    created_by="system",
)


def validate_weights(config: RiskConfiguration) -> None:
    """Raise IncompleteWeights unless the weight map is usable as-is."""
    weights = config.factor_weights
    if not weights:
        raise IncompleteWeights(config.version, "no factor weights defined")

    unknown = sorted(set(weights) - set(FACTOR_RULES))
    if unknown:
        raise IncompleteWeights(config.version, f"unknown factor(s) {', '.join(unknown)}")

    negative = sorted(name for name, w in weights.items() if w < 0)
    if negative:
        raise IncompleteWeights(config.version, f"negative weight for {', '.join(negative)}")

    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise IncompleteWeights(config.version, f"weights sum to {total:.6f}, expected 1.0")


def categorize(score: float, config: RiskConfiguration) -> tuple[RiskCategory, list[str]]:
    if score >= config.threshold_low_risk:
        return RiskCategory.LOW, []
    if score >= config.threshold_medium_risk:
        return RiskCategory.MEDIUM, []
    if score >= config.threshold_high_risk:
        return RiskCategory.HIGH, []
    # Below every threshold is still HIGH, but flagged
    return RiskCategory.HIGH, [BELOW_FLOOR]


def decide(score: float, config: RiskConfiguration) -> Verdict:
    if config.require_human_review:
        return Verdict.HUMAN_REVIEW
    if score >= config.auto_approve_threshold:
        return Verdict.AUTO_APPROVE
    if score <= config.auto_reject_threshold:
        return Verdict.AUTO_REJECT
    return Verdict.HUMAN_REVIEW


def evaluate(
    factors: ApplicantFactors,
    config: RiskConfiguration,
    engine_version: str = ENGINE_VERSION,
) -> RiskDecision:
    """
    Main scoring entry point.

    Raises IncompleteWeights when the configuration cannot be applied.
    """
    t0 = time.perf_counter_ns()
    validate_weights(config)

    # ── Step 1: Sub-scores, in configuration order ──
    results: list[tuple[FactorResult, float]] = [
        (FACTOR_RULES[name](factors), weight)
        for name, weight in config.factor_weights.items()
    ]

    # ── Step 2: Composite ──
    weighted_sum = 0.0
    for result, weight in results:
        weighted_sum += weight * result.sub_score
    score = round(weighted_sum * 100, 2)

    # ── Step 3: Category + verdict ──
    category, notes = categorize(score, config)
    verdict = decide(score, config)

    # ── Step 4: Explainability ──
    contributions: list[FactorContribution] = []
    key_risk_indicators: list[str] = []
    mitigation_suggestions: list[str] = []
    covered_weight = 0.0

    for result, weight in results:
        contributions.append(
            FactorContribution(
                factor_name=result.factor_name,
                raw_value=result.raw_value,
                bin_label=result.bin_label,
                sub_score=result.sub_score,
                weight=weight,
                contribution=round(weight * result.sub_score * 100, 2),
                impact=round(weight * (result.sub_score - 0.5) * 100, 2),
                note=result.note,
            )
        )
        if result.has_data:
            covered_weight += weight
        if result.sub_score < KEY_RISK_THRESHOLD:
            key_risk_indicators.append(f"{result.factor_name}: {result.note}")
            mitigation_suggestions.append(MITIGATIONS[result.factor_name])

    confidence = round(min(covered_weight, 1.0) * 100, 2)
    elapsed_us = int((time.perf_counter_ns() - t0) / 1_000)

    logger.info(
        "risk_evaluation_complete",
        config_version=config.version,
        score=score,
        category=category.value,
        verdict=verdict.value,
        confidence=confidence,
        key_risks=len(key_risk_indicators),
        elapsed_us=elapsed_us,
    )

    return RiskDecision(
        score=score,
        category=category,
        verdict=verdict,
        human_review_required=verdict == Verdict.HUMAN_REVIEW,
        confidence=confidence,
        contributions=contributions,
        notes=notes,
        key_risk_indicators=key_risk_indicators,
        mitigation_suggestions=mitigation_suggestions,
        config_version=config.version,
        engine_version=engine_version,
    )
