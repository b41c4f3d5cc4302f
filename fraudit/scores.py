"""Classic fraud-signal scores: Altman distress, Beneish manipulation, Piotroski strength.

Architecture
------------
Each scorer is a pure function from :class:`FinancialData` to a frozen
result, plus a ``persist_*`` helper that writes the matching ORM row.

- **Distress** (Altman Z): five balance-sheet ratios combined with fixed
  weights. The composite exists only if all five components exist.
- **Manipulation** (Beneish M): eight indices built from the supplied
  year-over-year growth figures and current-period values. There is no
  prior depreciation snapshot, so DEPI is fixed at 1.
- **Strength** (Piotroski F): nine boolean tests. Tests 6 (current ratio
  improvement) and 7 (no new shares) need the previous period; without it
  they default to true and ``baseline_available`` is false.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from fraudit.models import (
    AltmanZScore, BeneishMScore, FinancialData, FinancialStrength, ManipulationProbability,
    PiotroskiFScore, RiskCategory,
)
from fraudit.utils import BoundedDecimal, bounded, quantize, safe_divide

log = logging.getLogger(__name__)

ONE = Decimal(1)

# Altman weights for X1..X5
DISTRESS_WEIGHTS = (Decimal("1.2"), Decimal("1.4"), Decimal("3.3"), Decimal("0.6"), Decimal("1.0"))
DISTRESS_CUTOFF = Decimal("1.8")
GREY_CUTOFF = Decimal("3.0")

MANIPULATION_INTERCEPT = Decimal("-4.84")
MANIPULATION_HIGH = Decimal("-1.78")
MANIPULATION_MEDIUM = Decimal("-2.22")


# ---------------------------------------------------------------------------
# Distress (Altman Z)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DistressResult:
    working_capital_to_total_assets: BoundedDecimal | None
    retained_earnings_to_total_assets: BoundedDecimal | None
    ebit_to_total_assets: BoundedDecimal | None
    market_value_equity_to_book_value_debt: BoundedDecimal | None
    sales_to_total_assets: BoundedDecimal | None
    z_score: BoundedDecimal | None
    risk_category: RiskCategory | None


def categorize_distress(z_score: Decimal | None) -> RiskCategory | None:
    if z_score is None:
        return None
    if z_score < DISTRESS_CUTOFF:
        return RiskCategory.DISTRESS
    if z_score < GREY_CUTOFF:
        return RiskCategory.GREY
    return RiskCategory.SAFE


def calculate_distress(data: FinancialData) -> DistressResult:
    working_capital = None
    if data.total_current_assets is not None and data.total_current_liabilities is not None:
        working_capital = data.total_current_assets - data.total_current_liabilities
    ebit = None
    if data.earnings_before_tax is not None:
        ebit = data.earnings_before_tax + (data.interest_expense or Decimal(0))

    components = [
        bounded(safe_divide(working_capital, data.total_assets)),
        bounded(safe_divide(data.retained_earnings, data.total_assets)),
        bounded(safe_divide(ebit, data.total_assets)),
        bounded(safe_divide(data.market_capitalization, data.total_liabilities)),
        bounded(safe_divide(data.revenue, data.total_assets)),
    ]
    z_score = None
    if all(c is not None for c in components):
        z_score = bounded(quantize(sum((w * c for w, c in zip(DISTRESS_WEIGHTS, components)), Decimal(0))))
    return DistressResult(*components, z_score=z_score, risk_category=categorize_distress(z_score))


def persist_distress(session: Session, statement_id: int, result: DistressResult) -> AltmanZScore:
    values = asdict(result)
    category = values.pop("risk_category")
    row = AltmanZScore(
        statement_id=statement_id,
        risk_category=category.value if category else None,
        **values,
    )
    session.add(row)
    session.flush()
    return row


# ---------------------------------------------------------------------------
# Manipulation (Beneish M)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ManipulationResult:
    days_sales_receivables_index: BoundedDecimal | None
    gross_margin_index: BoundedDecimal | None
    asset_quality_index: BoundedDecimal | None
    sales_growth_index: BoundedDecimal | None
    depreciation_index: BoundedDecimal | None
    sg_admin_expenses_index: BoundedDecimal | None
    leverage_index: BoundedDecimal | None
    total_accruals_to_total_assets: BoundedDecimal | None
    m_score: BoundedDecimal | None
    manipulation_probability: ManipulationProbability | None


def categorize_manipulation(m_score: Decimal | None) -> ManipulationProbability | None:
    if m_score is None:
        return None
    if m_score > MANIPULATION_HIGH:
        return ManipulationProbability.HIGH
    if m_score > MANIPULATION_MEDIUM:
        return ManipulationProbability.MEDIUM
    return ManipulationProbability.LOW


def calculate_manipulation(data: FinancialData) -> ManipulationResult:
    accruals = None
    if data.net_income is not None and data.net_cash_from_operating is not None:
        accruals = data.net_income - data.net_cash_from_operating

    dsri = bounded(safe_divide(data.receivables_growth, data.revenue_growth))
    gmi = bounded(safe_divide(ONE, data.gross_profit_growth))
    aqi = bounded(data.asset_growth)
    sgi = bounded(data.revenue_growth)
    depi = BoundedDecimal(ONE)
    sgai = bounded(safe_divide(data.administrative_expenses, data.revenue))
    lvgi = bounded(data.liability_growth)
    tata = bounded(safe_divide(accruals, data.total_assets))

    m_score = None
    if None not in (dsri, gmi, aqi, sgi, sgai, lvgi, tata):
        m_score = bounded(quantize(
            MANIPULATION_INTERCEPT
            + Decimal("0.92") * dsri
            + Decimal("0.528") * gmi
            + Decimal("0.404") * aqi
            + Decimal("0.892") * sgi
            + Decimal("0.115") * depi
            - Decimal("0.172") * sgai
            + Decimal("4.679") * tata
            - Decimal("0.327") * lvgi
        ))
    return ManipulationResult(
        days_sales_receivables_index=dsri,
        gross_margin_index=gmi,
        asset_quality_index=aqi,
        sales_growth_index=sgi,
        depreciation_index=depi,
        sg_admin_expenses_index=sgai,
        leverage_index=lvgi,
        total_accruals_to_total_assets=tata,
        m_score=m_score,
        manipulation_probability=categorize_manipulation(m_score),
    )


def persist_manipulation(session: Session, statement_id: int, result: ManipulationResult) -> BeneishMScore:
    values = asdict(result)
    probability = values.pop("manipulation_probability")
    row = BeneishMScore(
        statement_id=statement_id,
        manipulation_probability=probability.value if probability else None,
        **values,
    )
    session.add(row)
    session.flush()
    return row


# ---------------------------------------------------------------------------
# Strength (Piotroski F)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrengthResult:
    positive_net_income: bool
    positive_operating_cash_flow: bool
    cash_flow_greater_than_net_income: bool
    improving_roa: bool
    decreasing_leverage: bool
    improving_current_ratio: bool
    no_new_shares: bool
    improving_gross_margin: bool
    improving_asset_turnover: bool
    f_score: int
    financial_strength: FinancialStrength
    baseline_available: bool


def categorize_strength(f_score: int | None) -> FinancialStrength | None:
    if f_score is None:
        return None
    if f_score <= 3:
        return FinancialStrength.WEAK
    if f_score <= 6:
        return FinancialStrength.MODERATE
    return FinancialStrength.STRONG


def _gt(left: Decimal | None, right: Decimal | None) -> bool:
    return left is not None and right is not None and left > right


def _current_ratio(data: FinancialData) -> Decimal | None:
    return safe_divide(data.total_current_assets, data.total_current_liabilities)


def calculate_strength(data: FinancialData, prior: FinancialData | None = None) -> StrengthResult:
    """Run the nine tests. *prior* is the same company's previous-period data, if known."""
    zero = Decimal(0)
    if prior is not None:
        improving_current_ratio = _gt(_current_ratio(data), _current_ratio(prior))
        no_new_shares = (
            data.shares_outstanding is not None
            and prior.shares_outstanding is not None
            and data.shares_outstanding <= prior.shares_outstanding
        )
    else:
        improving_current_ratio = True
        no_new_shares = True

    tests = {
        "positive_net_income": _gt(data.net_income, zero),
        "positive_operating_cash_flow": _gt(data.net_cash_from_operating, zero),
        "cash_flow_greater_than_net_income": _gt(data.net_cash_from_operating, data.net_income),
        "improving_roa": _gt(data.net_income_growth, zero),
        "decreasing_leverage": _gt(zero, data.liability_growth),
        "improving_current_ratio": improving_current_ratio,
        "no_new_shares": no_new_shares,
        "improving_gross_margin": _gt(data.gross_profit_growth, zero),
        "improving_asset_turnover": _gt(data.revenue_growth, data.asset_growth),
    }
    f_score = sum(tests.values())
    return StrengthResult(
        **tests,
        f_score=f_score,
        financial_strength=categorize_strength(f_score),
        baseline_available=prior is not None,
    )


def persist_strength(session: Session, statement_id: int, result: StrengthResult) -> PiotroskiFScore:
    values = asdict(result)
    strength = values.pop("financial_strength")
    row = PiotroskiFScore(statement_id=statement_id, financial_strength=strength.value, **values)
    session.add(row)
    session.flush()
    return row
