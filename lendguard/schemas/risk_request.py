"""
Inbound payloads for risk assessment.

The caller sends every applicant factor in one request; the engine never
fetches applicant data on its own. Missing values are allowed; each factor
rule decides how a missing value scores.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ApplicantFactors(BaseModel):
    """Raw applicant values consumed by the factor rules."""
    model_config = {"frozen": True, "allow_inf_nan": False}

    # Bureau
    credit_score: Optional[int] = Field(None, ge=300, le=850, description="FICO-like 300-850")
    previous_defaults: Optional[int] = Field(None, ge=0)

    # Income / obligations (monthly, same currency)
    monthly_income: Optional[float] = Field(None, ge=0)
    monthly_expenses: Optional[float] = Field(None, ge=0)
    dscr: Optional[float] = Field(None, description="Debt service coverage ratio")
    debt_to_income_ratio: Optional[float] = Field(
        None, ge=0, description="Existing debt service / income, 0.35 = 35%",
    )

    # Employment
    years_experience: Optional[float] = Field(None, ge=0)

    # Collateral: loan amount / collateral value. None = unsecured.
    collateral_ratio: Optional[float] = Field(None, ge=0)

    # External market outlook 0-100, higher = more favourable
    market_outlook: Optional[float] = Field(None, ge=0, le=100)


class AssessmentRequest(BaseModel):
    """
    POST /v1/assessments/generate

    `config_version` pins a specific configuration; otherwise the active
    one is used and recorded on the assessment.
    """
    application_id: str = Field(min_length=1)
    factors: ApplicantFactors
    config_version: Optional[str] = None


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    comments: str = Field(min_length=1)
