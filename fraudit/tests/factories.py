"""Reference filings used across the test modules."""
from __future__ import annotations

from decimal import Decimal

from fraudit.models import FinancialData

# Healthy filer: current ratio 3.2, safe Z, low M, F = 9.
HEALTHY = {
    "revenue": "2500000", "cost_of_sales": "1500000", "gross_profit": "1000000",
    "administrative_expenses": "200000", "operating_income": "320000",
    "interest_expense": "20000", "earnings_before_tax": "300000", "net_income": "240000",
    "cash": "200000", "short_term_investments": "50000", "accounts_receivable": "150000",
    "inventory": "100000", "total_current_assets": "800000", "total_current_liabilities": "250000",
    "total_assets": "2000000", "total_liabilities": "700000", "total_equity": "1300000",
    "retained_earnings": "600000", "net_cash_from_operating": "300000",
    "market_capitalization": "3000000", "shares_outstanding": "100000",
    "market_price_per_share": "30", "earnings_per_share": "2.4", "book_value_per_share": "13",
    "revenue_growth": "0.95", "gross_profit_growth": "1.05", "net_income_growth": "0.05",
    "asset_growth": "0.90", "receivables_growth": "0.90", "inventory_growth": "1.01",
    "liability_growth": "-0.02",
}

# Distressed filer with inflated receivables and accruals.
RISKY = {
    "revenue": "800000", "administrative_expenses": "100000", "operating_income": "-20000",
    "interest_expense": "30000", "earnings_before_tax": "-50000", "net_income": "50000",
    "total_current_assets": "200000", "total_current_liabilities": "400000",
    "total_assets": "1000000", "total_liabilities": "900000", "total_equity": "100000",
    "retained_earnings": "-100000", "net_cash_from_operating": "-100000",
    "market_capitalization": "200000", "accounts_receivable": "300000",
    "revenue_growth": "1.1", "gross_profit_growth": "0.8", "net_income_growth": "-0.4",
    "asset_growth": "1.4", "receivables_growth": "1.8", "liability_growth": "1.3",
}


def financial_data(values: dict[str, str], **overrides) -> FinancialData:
    merged = {**values, **overrides}
    return FinancialData(**{k: (Decimal(v) if v is not None else None) for k, v in merged.items()})
