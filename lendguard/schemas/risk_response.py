"""
Engine output and the persisted assessment record.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from lendguard.schemas.risk_request import ApplicantFactors, ReviewDecision


class RiskCategory(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Verdict(str, Enum):
    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    HUMAN_REVIEW = "human_review"


BELOW_FLOOR = "BELOW_FLOOR"


class FactorContribution(BaseModel):
    """Explainability for one factor."""
    factor_name: str
    raw_value: Optional[str] = None
    bin_label: str
    sub_score: float = Field(ge=0, le=1)
    weight: float
    contribution: float = Field(description="weight * sub_score * 100; contributions sum to the score")
    impact: float = Field(description="Signed deviation from a neutral (0.5) applicant, in score points")
    note: str


class RiskDecision(BaseModel):
    """What the engine computed. Identical inputs + config version give an identical decision."""
    score: float = Field(ge=0, le=100)
    category: RiskCategory
    verdict: Verdict
    human_review_required: bool
    confidence: float
    contributions: list[FactorContribution]
    notes: list[str] = []
    key_risk_indicators: list[str] = []
    mitigation_suggestions: list[str] = []
    config_version: str
    engine_version: str


class ReviewOutcome(BaseModel):
    decision: ReviewDecision
    comments: str
    reviewed_by: str
    reviewed_at: datetime


class RiskAssessment(BaseModel):
    """
    One evaluation run. Never recomputed in place: a re-evaluation is a
    new record. The review outcome can be attached exactly once.
    """
    id: str
    application_id: str
    officer_id: str
    inputs: ApplicantFactors
    decision: RiskDecision
    evaluated_at: datetime
    review: Optional[ReviewOutcome] = None
