"""
Versioned risk configuration.

A configuration is immutable once created; only which version is active
changes, and that is a single pointer swap in the store.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class RiskConfigurationDraft(BaseModel):
    """POST /v1/config/risk body. Version is assigned by the server."""
    name: str = Field(min_length=1)
    description: str = ""
    factor_weights: dict[str, float]
    threshold_low_risk: float
    threshold_medium_risk: float
    threshold_high_risk: float
    auto_approve_threshold: float
    auto_reject_threshold: float
    require_human_review: bool = True
    retention_period_months: int = Field(84, gt=0)


class RiskConfiguration(RiskConfigurationDraft):
    model_config = {"frozen": True}

    version: str
    sequence: int
    is_active: bool = False
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
