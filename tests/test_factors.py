"""
Unit tests for individual factor rules.
"""
from lendguard.scoring.factors import (
    FACTOR_RULES,
    MITIGATIONS,
    score_collateral,
    score_credit_history,
    score_debt_to_income,
    score_dscr,
    score_experience,
    score_income_stability,
    score_market_conditions,
)


class TestCreditHistory:
    def test_top_of_range(self):
        r = score_credit_history(850, 0)
        assert r.sub_score == 1.0
        assert r.bin_label.endswith("(Excellent)")

    def test_bottom_of_range(self):
        assert score_credit_history(300, 0).sub_score == 0.0

    def test_defaults_penalised(self):
        clean = score_credit_history(700, 0)
        one_default = score_credit_history(700, 1)
        assert round(clean.sub_score - one_default.sub_score, 4) == 0.15
        assert "1 previous default" in one_default.note

    def test_clamped_at_zero(self):
        assert score_credit_history(400, 5).sub_score == 0.0

    def test_missing(self):
        r = score_credit_history(None, None)
        assert r.bin_label == "MISSING"
        assert r.sub_score == 0.0
        assert not r.has_data


class TestIncomeStability:
    def test_strong(self):
        r = score_income_stability(10_000, 5_000)  # 50% disposable
        assert r.sub_score == 1.0

    def test_thin(self):
        r = score_income_stability(10_000, 8_500)  # 15%
        assert r.bin_label == "10-20%"
        assert r.sub_score == 0.25

    def test_negative_disposable(self):
        assert score_income_stability(4_000, 5_000).sub_score == 0.1

    def test_zero_income_is_missing(self):
        assert score_income_stability(0, 1_000).bin_label == "MISSING"


class TestDSCR:
    def test_shortfall(self):
        assert score_dscr(0.9).sub_score == 0.0

    def test_tight(self):
        assert score_dscr(1.1).sub_score == 0.3

    def test_adequate(self):
        r = score_dscr(1.4)
        assert r.bin_label == "1.25-1.5 (Adequate)"
        assert r.sub_score == 0.6

    def test_bin_edges(self):
        assert score_dscr(1.25).sub_score == 0.6
        assert score_dscr(1.5).sub_score == 0.8
        assert score_dscr(2.0).sub_score == 1.0

    def test_missing(self):
        assert score_dscr(None).bin_label == "MISSING"

    def test_non_finite_is_missing(self):
        for value in (float("nan"), float("inf")):
            r = score_dscr(value)
            assert r.bin_label == "MISSING"
            assert r.sub_score == 0.0
            assert not r.has_data


class TestExperience:
    def test_five_years(self):
        assert score_experience(5).sub_score == 0.6

    def test_new_hire(self):
        assert score_experience(0.5).sub_score == 0.1

    def test_veteran(self):
        assert score_experience(25).sub_score == 1.0


class TestCollateral:
    def test_well_covered(self):
        r = score_collateral(0.25)
        assert r.bin_label == "≤50%"
        assert r.sub_score == 1.0

    def test_undercollateralised(self):
        assert score_collateral(1.2).sub_score == 0.1

    def test_unsecured(self):
        r = score_collateral(None)
        assert r.bin_label == "UNSECURED"
        assert r.sub_score == 0.0


class TestDebtToIncome:
    def test_low_burden(self):
        assert score_debt_to_income(0.15).sub_score == 1.0

    def test_high_burden(self):
        assert score_debt_to_income(0.45).sub_score == 0.25

    def test_very_high_burden(self):
        assert score_debt_to_income(0.8).sub_score == 0.1


class TestMarketConditions:
    def test_scaled(self):
        assert score_market_conditions(80).sub_score == 0.8

    def test_missing_is_neutral_but_flagged(self):
        r = score_market_conditions(None)
        assert r.sub_score == 0.5
        assert not r.has_data


class TestMonotonicity:
    def test_dscr_never_decreases(self):
        values = [0.5, 1.0, 1.2, 1.3, 1.6, 2.5, 4.0]
        subs = [score_dscr(v).sub_score for v in values]
        assert subs == sorted(subs)

    def test_debt_ratio_never_increases(self):
        values = [0.1, 0.25, 0.35, 0.45, 0.6, 0.9]
        subs = [score_debt_to_income(v).sub_score for v in values]
        assert subs == sorted(subs, reverse=True)

    def test_collateral_ratio_never_increases(self):
        values = [0.3, 0.6, 0.8, 0.95, 1.5]
        subs = [score_collateral(v).sub_score for v in values]
        assert subs == sorted(subs, reverse=True)


def test_every_rule_has_a_mitigation():
    assert set(FACTOR_RULES) == set(MITIGATIONS)
