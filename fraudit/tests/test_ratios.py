"""Ratio calculation and decimal bounding."""
from __future__ import annotations

import random
from decimal import Decimal

import pytest

from fraudit.models import FinancialData, FinancialRatios
from fraudit.ratios import RATIO_FIELDS, calculate_ratios, persist_ratios
from fraudit.tests.factories import HEALTHY, financial_data
from fraudit.utils import DECIMAL_CAP, BoundedDecimal, bounded, safe_divide

INPUT_FIELDS = (
    "revenue", "cost_of_sales", "gross_profit", "operating_income", "interest_expense",
    "net_income", "cash", "short_term_investments", "accounts_receivable", "inventory",
    "total_current_assets", "total_current_liabilities", "total_assets", "total_liabilities",
    "total_equity", "net_cash_from_operating", "market_price_per_share", "earnings_per_share",
    "book_value_per_share",
)


# =========================================================================
# BoundedDecimal / safe_divide
# =========================================================================

class TestBoundedDecimal:
    def test_within_range_unchanged(self):
        assert BoundedDecimal(Decimal("12.3456")) == Decimal("12.3456")

    def test_clamps_above_cap(self):
        assert BoundedDecimal(Decimal("5e12")) == DECIMAL_CAP

    def test_clamps_below_negative_cap(self):
        assert BoundedDecimal(Decimal("-5e12")) == -DECIMAL_CAP

    def test_nan_maps_to_zero(self):
        assert BoundedDecimal(Decimal("NaN")) == 0

    def test_infinity_keeps_sign(self):
        assert BoundedDecimal(Decimal("Infinity")) == DECIMAL_CAP
        assert BoundedDecimal(Decimal("-Infinity")) == -DECIMAL_CAP

    def test_bounded_passes_none(self):
        assert bounded(None) is None

    def test_is_a_decimal(self):
        assert isinstance(BoundedDecimal("1.5"), Decimal)


class TestSafeDivide:
    def test_rounds_half_up_to_four_places(self):
        assert safe_divide(Decimal("2"), Decimal("3")) == Decimal("0.6667")
        assert safe_divide(Decimal("1"), Decimal("8")) == Decimal("0.1250")

    def test_zero_denominator(self):
        assert safe_divide(Decimal("1"), Decimal("0")) is None

    def test_missing_operand(self):
        assert safe_divide(None, Decimal("2")) is None
        assert safe_divide(Decimal("2"), None) is None


# =========================================================================
# calculate_ratios
# =========================================================================

class TestCalculateRatios:
    def test_current_ratio_scenario(self):
        data = FinancialData(total_current_assets=Decimal("800000"), total_current_liabilities=Decimal("250000"))
        ratios = calculate_ratios(data)
        assert ratios.current_ratio == Decimal("3.2000")
        assert str(ratios.current_ratio) == "3.2000"

    def test_healthy_filing(self):
        ratios = calculate_ratios(financial_data(HEALTHY))
        assert ratios.quick_ratio == Decimal("1.6000")
        assert ratios.cash_ratio == Decimal("1.0000")
        assert ratios.gross_margin == Decimal("40.0000")
        assert ratios.net_profit_margin == Decimal("9.6000")
        assert ratios.return_on_assets == Decimal("12.0000")
        assert ratios.asset_turnover == Decimal("1.2500")
        assert ratios.inventory_turnover == Decimal("15.0000")
        assert ratios.accounts_receivable_turnover == Decimal("16.6667")
        assert ratios.days_sales_outstanding == Decimal("21.9000")
        assert ratios.debt_ratio == Decimal("0.3500")
        assert ratios.interest_coverage == Decimal("16.0000")
        assert ratios.price_to_earnings == Decimal("12.5000")
        assert ratios.accrual_ratio == Decimal("-0.0300")
        assert ratios.earnings_quality == Decimal("1.2500")

    def test_percent_is_rounded_quotient_times_hundred(self):
        data = FinancialData(gross_profit=Decimal("1"), revenue=Decimal("3"))
        assert calculate_ratios(data).gross_margin == Decimal("33.3300")

    def test_quick_ratio_treats_missing_addends_as_zero(self):
        data = FinancialData(cash=Decimal("100"), total_current_liabilities=Decimal("200"))
        ratios = calculate_ratios(data)
        assert ratios.quick_ratio == Decimal("0.5000")
        assert ratios.cash_ratio == Decimal("0.5000")

    def test_zero_denominators_give_none(self):
        data = financial_data(HEALTHY, total_current_liabilities="0", revenue="0", inventory="0")
        ratios = calculate_ratios(data)
        assert ratios.current_ratio is None
        assert ratios.quick_ratio is None
        assert ratios.gross_margin is None
        assert ratios.inventory_turnover is None
        assert ratios.accounts_receivable_turnover is None
        assert ratios.days_sales_outstanding is None

    def test_empty_data_gives_all_none(self):
        ratios = calculate_ratios(FinancialData())
        assert all(value is None for value in ratios.as_dict().values())

    def test_huge_quotient_is_capped(self):
        data = FinancialData(total_current_assets=Decimal("1e20"), total_current_liabilities=Decimal("1"))
        assert calculate_ratios(data).current_ratio == DECIMAL_CAP


class TestRatioProperties:
    @pytest.mark.parametrize("seed", range(5))
    def test_outputs_are_none_or_bounded(self, seed):
        rng = random.Random(seed)
        choices = [Decimal(0), Decimal("0.0001"), Decimal("-0.0001"), Decimal("1e15"), Decimal("-1e15")]
        for _ in range(200):
            values = {}
            for name in INPUT_FIELDS:
                roll = rng.random()
                if roll < 0.15:
                    values[name] = None
                elif roll < 0.35:
                    values[name] = rng.choice(choices)
                else:
                    values[name] = Decimal(str(round(rng.uniform(-1e7, 1e7), 4)))
            ratios = calculate_ratios(FinancialData(**values))
            for name in RATIO_FIELDS:
                value = getattr(ratios, name)
                if value is None:
                    continue
                assert value.is_finite()
                assert -DECIMAL_CAP <= value <= DECIMAL_CAP


class TestPersistRatios:
    def test_persists_one_row(self, session, make_statement):
        statement = make_statement(session, HEALTHY)
        row = persist_ratios(session, statement.id, calculate_ratios(financial_data(HEALTHY)))
        session.commit()
        stored = session.get(FinancialRatios, row.id)
        assert stored.statement_id == statement.id
        assert stored.current_ratio == Decimal("3.2000")
        assert stored.price_to_book is not None
