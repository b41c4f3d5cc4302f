"""Financial ratio calculation.

Every ratio is a guarded quotient rounded to 4 places (ROUND_HALF_UP).
Percentage ratios (margins, ROA, ROE) are the 4-place quotient times 100.
A ratio is ``None`` when an operand is missing or its denominator is zero,
and every computed value passes through :class:`BoundedDecimal` so it fits
the persisted ``Numeric(19, 4)`` columns.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from decimal import Decimal

from sqlalchemy.orm import Session

from fraudit.models import FinancialData, FinancialRatios
from fraudit.utils import BoundedDecimal, bounded, safe_divide

log = logging.getLogger(__name__)

HUNDRED = Decimal(100)
DAYS_PER_YEAR = Decimal(365)


@dataclass(frozen=True)
class RatioValues:
    current_ratio: BoundedDecimal | None = None
    quick_ratio: BoundedDecimal | None = None
    cash_ratio: BoundedDecimal | None = None
    gross_margin: BoundedDecimal | None = None
    operating_margin: BoundedDecimal | None = None
    net_profit_margin: BoundedDecimal | None = None
    return_on_assets: BoundedDecimal | None = None
    return_on_equity: BoundedDecimal | None = None
    asset_turnover: BoundedDecimal | None = None
    inventory_turnover: BoundedDecimal | None = None
    accounts_receivable_turnover: BoundedDecimal | None = None
    days_sales_outstanding: BoundedDecimal | None = None
    debt_to_equity: BoundedDecimal | None = None
    debt_ratio: BoundedDecimal | None = None
    interest_coverage: BoundedDecimal | None = None
    price_to_earnings: BoundedDecimal | None = None
    price_to_book: BoundedDecimal | None = None
    accrual_ratio: BoundedDecimal | None = None
    earnings_quality: BoundedDecimal | None = None

    def as_dict(self) -> dict[str, BoundedDecimal | None]:
        return asdict(self)


RATIO_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(RatioValues))


def _percent(numerator: Decimal | None, denominator: Decimal | None) -> Decimal | None:
    quotient = safe_divide(numerator, denominator)
    return None if quotient is None else quotient * HUNDRED


def _sum_or_zero(*values: Decimal | None) -> Decimal:
    return sum((v for v in values if v is not None), Decimal(0))


def _quick_ratio(data: FinancialData) -> Decimal | None:
    if not data.total_current_liabilities:
        return None
    quick_assets = _sum_or_zero(data.cash, data.short_term_investments, data.accounts_receivable)
    return safe_divide(quick_assets, data.total_current_liabilities)


def _cash_ratio(data: FinancialData) -> Decimal | None:
    if not data.total_current_liabilities:
        return None
    cash_like = _sum_or_zero(data.cash, data.short_term_investments)
    return safe_divide(cash_like, data.total_current_liabilities)


def _accrual_ratio(data: FinancialData) -> Decimal | None:
    if data.net_income is None or data.net_cash_from_operating is None:
        return None
    return safe_divide(data.net_income - data.net_cash_from_operating, data.total_assets)


def calculate_ratios(data: FinancialData) -> RatioValues:
    """Derive all ratios from one statement's raw figures. Pure."""
    receivables_turnover = safe_divide(data.revenue, data.accounts_receivable)
    raw = {
        "current_ratio": safe_divide(data.total_current_assets, data.total_current_liabilities),
        "quick_ratio": _quick_ratio(data),
        "cash_ratio": _cash_ratio(data),
        "gross_margin": _percent(data.gross_profit, data.revenue),
        "operating_margin": _percent(data.operating_income, data.revenue),
        "net_profit_margin": _percent(data.net_income, data.revenue),
        "return_on_assets": _percent(data.net_income, data.total_assets),
        "return_on_equity": _percent(data.net_income, data.total_equity),
        "asset_turnover": safe_divide(data.revenue, data.total_assets),
        "inventory_turnover": safe_divide(data.cost_of_sales, data.inventory),
        "accounts_receivable_turnover": receivables_turnover,
        "days_sales_outstanding": safe_divide(DAYS_PER_YEAR, receivables_turnover),
        "debt_to_equity": safe_divide(data.total_liabilities, data.total_equity),
        "debt_ratio": safe_divide(data.total_liabilities, data.total_assets),
        "interest_coverage": safe_divide(data.operating_income, data.interest_expense),
        "price_to_earnings": safe_divide(data.market_price_per_share, data.earnings_per_share),
        "price_to_book": safe_divide(data.market_price_per_share, data.book_value_per_share),
        "accrual_ratio": _accrual_ratio(data),
        "earnings_quality": safe_divide(data.net_cash_from_operating, data.net_income),
    }
    return RatioValues(**{name: bounded(value) for name, value in raw.items()})


def persist_ratios(session: Session, statement_id: int, values: RatioValues) -> FinancialRatios:
    """Store a ratio snapshot for the statement. Caller must commit."""
    row = FinancialRatios(statement_id=statement_id, **values.as_dict())
    session.add(row)
    session.flush()
    log.debug("Stored ratios for statement %s (current=%s)", statement_id, values.current_ratio)
    return row
