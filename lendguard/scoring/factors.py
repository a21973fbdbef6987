"""
Factor rules

Each factor:
  1. Takes its raw input(s) from ApplicantFactors
  2. Maps it to a bin
  3. Returns a normalised sub-score in [0, 1]

Weights are applied in the engine, not here.

Convention: HIGHER sub-score = LOWER risk. Every rule is monotonic in its
input (more coverage / experience / credit → higher; more leverage → lower).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional

from lendguard.schemas.risk_request import ApplicantFactors


@dataclass(frozen=True)
class FactorResult:
    factor_name: str
    raw_value: Optional[str]
    bin_label: str
    sub_score: float
    note: str

    @property
    def has_data(self) -> bool:
        return self.raw_value is not None


# ═══════════════════════════════════════════════════════════════
# 1. CREDIT HISTORY
#    Bureau score 300-850 scaled to [0,1], minus 0.15 per prior default
# ═══════════════════════════════════════════════════════════════
DEFAULT_PENALTY = 0.15


def score_credit_history(credit_score: Optional[int], previous_defaults: Optional[int]) -> FactorResult:
    if credit_score is None:
        return FactorResult("credit_history", None, "MISSING", 0.0, "No bureau score on file")

    defaults = previous_defaults or 0
    normalised = (credit_score - 300) / 550 - DEFAULT_PENALTY * defaults
    sub = round(min(1.0, max(0.0, normalised)), 4)
    raw = f"{credit_score} / {defaults} default(s)"

    if credit_score >= 750:
        label, note = "≥750 (Excellent)", "Excellent credit history with strong repayment track record"
    elif credit_score >= 700:
        label, note = "700-749 (Good)", "Good credit history demonstrating reliable financial behaviour"
    elif credit_score >= 650:
        label, note = "650-699 (Fair)", "Fair credit history with some past challenges"
    elif credit_score >= 600:
        label, note = "600-649 (Below average)", "Below average credit history with notable risk factors"
    else:
        label, note = "<600 (Poor)", "Poor credit history with significant concerns"

    if defaults:
        note = f"{note}; {defaults} previous default(s) penalised"
    return FactorResult("credit_history", raw, label, sub, note)


# ═══════════════════════════════════════════════════════════════
# 2. INCOME STABILITY
#    Disposable share of monthly income after expenses
# ═══════════════════════════════════════════════════════════════
def score_income_stability(monthly_income: Optional[float], monthly_expenses: Optional[float]) -> FactorResult:
    if monthly_income is None or monthly_income <= 0:
        return FactorResult("income_stability", None, "MISSING", 0.0, "No income data provided")

    expenses = monthly_expenses or 0.0
    ratio = (monthly_income - expenses) / monthly_income
    raw = f"{ratio:.1%} disposable"

    if ratio >= 0.4:
        return FactorResult("income_stability", raw, "≥40%", 1.0, "Strong income with significant disposable income")
    elif ratio >= 0.3:
        return FactorResult("income_stability", raw, "30-40%", 0.8, "Good income position supporting repayment")
    elif ratio >= 0.2:
        return FactorResult("income_stability", raw, "20-30%", 0.5, "Adequate income but limited flexibility")
    elif ratio >= 0.1:
        return FactorResult("income_stability", raw, "10-20%", 0.25, "Thin disposable income")
    else:
        return FactorResult("income_stability", raw, "<10%", 0.1, "Minimal or negative disposable income")


# ═══════════════════════════════════════════════════════════════
# 3. DSCR
#    Debt service coverage: below 1.0 the applicant cannot cover payments
# ═══════════════════════════════════════════════════════════════
def score_dscr(dscr: Optional[float]) -> FactorResult:
    if dscr is None or not math.isfinite(dscr):
        return FactorResult("dscr", None, "MISSING", 0.0, "DSCR not provided")

    raw = f"{dscr:.2f}"
    if dscr < 1.0:
        return FactorResult("dscr", raw, "<1.0 (Shortfall)", 0.0, "Income does not cover debt service")
    elif dscr < 1.25:
        return FactorResult("dscr", raw, "1.0-1.25 (Tight)", 0.3, "Debt service barely covered")
    elif dscr < 1.5:
        return FactorResult("dscr", raw, "1.25-1.5 (Adequate)", 0.6, "Adequate coverage with a modest buffer")
    elif dscr < 2.0:
        return FactorResult("dscr", raw, "1.5-2.0 (Good)", 0.8, "Good coverage of debt service")
    else:
        return FactorResult("dscr", raw, "≥2.0 (Strong)", 1.0, "Strong coverage of debt service")


# ═══════════════════════════════════════════════════════════════
# 4. EXPERIENCE
#    Years in current employment / industry
# ═══════════════════════════════════════════════════════════════
def score_experience(years: Optional[float]) -> FactorResult:
    if years is None:
        return FactorResult("experience", None, "MISSING", 0.0, "Employment history not provided")

    raw = f"{years:g}y"
    if years < 1:
        return FactorResult("experience", raw, "<1y", 0.1, "Very recent employment")
    elif years < 2:
        return FactorResult("experience", raw, "1-2y", 0.25, "Recent employment")
    elif years < 5:
        return FactorResult("experience", raw, "2-5y", 0.4, "Stable employment")
    elif years < 10:
        return FactorResult("experience", raw, "5-10y", 0.6, "Established employment tenure")
    elif years < 20:
        return FactorResult("experience", raw, "10-20y", 0.8, "Extensive industry experience")
    else:
        return FactorResult("experience", raw, "≥20y", 1.0, "Long-standing industry experience")


# ═══════════════════════════════════════════════════════════════
# 5. COLLATERAL
#    Loan-to-collateral-value; lower means better coverage
# ═══════════════════════════════════════════════════════════════
def score_collateral(collateral_ratio: Optional[float]) -> FactorResult:
    if collateral_ratio is None:
        return FactorResult("collateral", None, "UNSECURED", 0.0, "No collateral provided - unsecured loan")

    raw = f"{collateral_ratio:.0%}"
    if collateral_ratio <= 0.5:
        return FactorResult("collateral", raw, "≤50%", 1.0, "Excellent collateral coverage")
    elif collateral_ratio <= 0.7:
        return FactorResult("collateral", raw, "50-70%", 0.8, "Good collateral coverage")
    elif collateral_ratio <= 0.9:
        return FactorResult("collateral", raw, "70-90%", 0.6, "Moderate collateral coverage")
    elif collateral_ratio <= 1.0:
        return FactorResult("collateral", raw, "90-100%", 0.4, "Marginal collateral coverage")
    else:
        return FactorResult("collateral", raw, ">100%", 0.1, "Undercollateralised")


# ═══════════════════════════════════════════════════════════════
# 6. DEBT TO INCOME
#    Existing debt burden; higher ratio means lower sub-score
# ═══════════════════════════════════════════════════════════════
def score_debt_to_income(ratio: Optional[float]) -> FactorResult:
    if ratio is None:
        return FactorResult("debt_to_income", None, "MISSING", 0.0, "Debt-to-income ratio not provided")

    raw = f"{ratio:.0%}"
    if ratio <= 0.20:
        return FactorResult("debt_to_income", raw, "≤20%", 1.0, "Minimal existing obligations")
    elif ratio <= 0.30:
        return FactorResult("debt_to_income", raw, "20-30%", 0.8, "Manageable debt levels")
    elif ratio <= 0.40:
        return FactorResult("debt_to_income", raw, "30-40%", 0.5, "Debt burden approaching prudent limits")
    elif ratio <= 0.50:
        return FactorResult("debt_to_income", raw, "40-50%", 0.25, "High debt burden")
    else:
        return FactorResult("debt_to_income", raw, ">50%", 0.1, "Very high debt burden")


# ═══════════════════════════════════════════════════════════════
# 7. MARKET CONDITIONS
#    External outlook 0-100; neutral when not supplied
# ═══════════════════════════════════════════════════════════════
def score_market_conditions(outlook: Optional[float]) -> FactorResult:
    if outlook is None:
        return FactorResult("market_conditions", None, "NOT_PROVIDED", 0.5, "No market data; neutral outlook assumed")

    sub = round(outlook / 100, 4)
    if outlook >= 70:
        label, note = "≥70 (Favourable)", "Favourable market conditions"
    elif outlook >= 40:
        label, note = "40-70 (Neutral)", "Neutral market conditions"
    else:
        label, note = "<40 (Challenging)", "Challenging market conditions"
    return FactorResult("market_conditions", f"{outlook:g}", label, sub, note)


FactorRule = Callable[[ApplicantFactors], FactorResult]

FACTOR_RULES: dict[str, FactorRule] = {
    "credit_history": lambda f: score_credit_history(f.credit_score, f.previous_defaults),
    "income_stability": lambda f: score_income_stability(f.monthly_income, f.monthly_expenses),
    "dscr": lambda f: score_dscr(f.dscr),
    "experience": lambda f: score_experience(f.years_experience),
    "collateral": lambda f: score_collateral(f.collateral_ratio),
    "debt_to_income": lambda f: score_debt_to_income(f.debt_to_income_ratio),
    "market_conditions": lambda f: score_market_conditions(f.market_outlook),
}

MITIGATIONS: dict[str, str] = {
    "credit_history": "Require a co-signer with stronger credit history",
    "income_stability": "Reduce loan amount or extend repayment term",
    "dscr": "Restructure repayment schedule to improve coverage",
    "experience": "Verify income through multiple sources",
    "collateral": "Request additional collateral or a larger down payment",
    "debt_to_income": "Require a debt consolidation plan before approval",
    "market_conditions": "Apply closer monitoring during the first repayment year",
}
