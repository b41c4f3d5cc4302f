from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from fraudit.utils import utc_now


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enumerations (stored as their string value)
# ---------------------------------------------------------------------------


class StatementStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    ANALYZED = "ANALYZED"


class RiskCategory(StrEnum):
    DISTRESS = "DISTRESS"
    GREY = "GREY"
    SAFE = "SAFE"


class ManipulationProbability(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FinancialStrength(StrEnum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class AlertSeverity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class AlertType(StrEnum):
    OVERALL_RISK = "OVERALL_RISK"
    Z_SCORE = "Z_SCORE"
    M_SCORE = "M_SCORE"
    F_SCORE = "F_SCORE"
    ML_PREDICTION = "ML_PREDICTION"


class ModelType(StrEnum):
    RANDOM_FOREST = "RANDOM_FOREST"
    NEURAL_NETWORK = "NEURAL_NETWORK"
    LOGISTIC_REGRESSION = "LOGISTIC_REGRESSION"


def _amount() -> Mapped[Decimal | None]:
    return mapped_column(Numeric(38, 4), nullable=True)


def _ratio() -> Mapped[Decimal | None]:
    return mapped_column(Numeric(19, 4), nullable=True)


def _statement_fk() -> Mapped[int]:
    return mapped_column(Integer, ForeignKey("financial_statements.id"), nullable=False, unique=True)


# ---------------------------------------------------------------------------
# Provider entities (company / fiscal year / statement / raw data)
# ---------------------------------------------------------------------------


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    stock_code: Mapped[str] = mapped_column(String(20), default="")
    sector: Mapped[str] = mapped_column(String(100), default="")

    fiscal_years: Mapped[list[FiscalYear]] = relationship(back_populates="company", cascade="all, delete-orphan")


class FiscalYear(Base):
    __tablename__ = "fiscal_years"
    __table_args__ = (UniqueConstraint("company_id", "year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(Integer, ForeignKey("companies.id"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_audited: Mapped[bool] = mapped_column(Boolean, default=False)

    company: Mapped[Company] = relationship(back_populates="fiscal_years")
    statements: Mapped[list[FinancialStatement]] = relationship(back_populates="fiscal_year", cascade="all, delete-orphan")


class FinancialStatement(Base):
    __tablename__ = "financial_statements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fiscal_year_id: Mapped[int] = mapped_column(Integer, ForeignKey("fiscal_years.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), default="")
    statement_type: Mapped[str] = mapped_column(String(30), default="ANNUAL")
    period: Mapped[str] = mapped_column(String(30), default="")
    status: Mapped[str] = mapped_column(String(20), default=StatementStatus.PENDING.value, index=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    fiscal_year: Mapped[FiscalYear] = relationship(back_populates="statements")
    financial_data: Mapped[FinancialData | None] = relationship(back_populates="statement", cascade="all, delete-orphan")


class FinancialData(Base):
    __tablename__ = "financial_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()

    # Income statement
    revenue: Mapped[Decimal | None] = _amount()
    cost_of_sales: Mapped[Decimal | None] = _amount()
    gross_profit: Mapped[Decimal | None] = _amount()
    operating_expenses: Mapped[Decimal | None] = _amount()
    administrative_expenses: Mapped[Decimal | None] = _amount()
    selling_expenses: Mapped[Decimal | None] = _amount()
    depreciation: Mapped[Decimal | None] = _amount()
    amortization: Mapped[Decimal | None] = _amount()
    operating_income: Mapped[Decimal | None] = _amount()
    interest_expense: Mapped[Decimal | None] = _amount()
    other_income: Mapped[Decimal | None] = _amount()
    earnings_before_tax: Mapped[Decimal | None] = _amount()
    income_tax: Mapped[Decimal | None] = _amount()
    net_income: Mapped[Decimal | None] = _amount()

    # Balance sheet: assets
    cash: Mapped[Decimal | None] = _amount()
    short_term_investments: Mapped[Decimal | None] = _amount()
    accounts_receivable: Mapped[Decimal | None] = _amount()
    inventory: Mapped[Decimal | None] = _amount()
    other_current_assets: Mapped[Decimal | None] = _amount()
    total_current_assets: Mapped[Decimal | None] = _amount()
    property_plant_equipment: Mapped[Decimal | None] = _amount()
    accumulated_depreciation: Mapped[Decimal | None] = _amount()
    intangible_assets: Mapped[Decimal | None] = _amount()
    long_term_investments: Mapped[Decimal | None] = _amount()
    other_non_current_assets: Mapped[Decimal | None] = _amount()
    total_non_current_assets: Mapped[Decimal | None] = _amount()
    total_assets: Mapped[Decimal | None] = _amount()

    # Balance sheet: liabilities and equity
    accounts_payable: Mapped[Decimal | None] = _amount()
    short_term_debt: Mapped[Decimal | None] = _amount()
    accrued_liabilities: Mapped[Decimal | None] = _amount()
    other_current_liabilities: Mapped[Decimal | None] = _amount()
    total_current_liabilities: Mapped[Decimal | None] = _amount()
    long_term_debt: Mapped[Decimal | None] = _amount()
    deferred_taxes: Mapped[Decimal | None] = _amount()
    other_non_current_liabilities: Mapped[Decimal | None] = _amount()
    total_non_current_liabilities: Mapped[Decimal | None] = _amount()
    total_liabilities: Mapped[Decimal | None] = _amount()
    common_stock: Mapped[Decimal | None] = _amount()
    additional_paid_in_capital: Mapped[Decimal | None] = _amount()
    retained_earnings: Mapped[Decimal | None] = _amount()
    treasury_stock: Mapped[Decimal | None] = _amount()
    other_equity: Mapped[Decimal | None] = _amount()
    total_equity: Mapped[Decimal | None] = _amount()

    # Cash flow
    net_cash_from_operating: Mapped[Decimal | None] = _amount()
    net_cash_from_investing: Mapped[Decimal | None] = _amount()
    net_cash_from_financing: Mapped[Decimal | None] = _amount()
    net_change_in_cash: Mapped[Decimal | None] = _amount()

    # Market
    market_capitalization: Mapped[Decimal | None] = _amount()
    shares_outstanding: Mapped[Decimal | None] = _amount()
    market_price_per_share: Mapped[Decimal | None] = _amount()
    book_value_per_share: Mapped[Decimal | None] = _amount()
    earnings_per_share: Mapped[Decimal | None] = _amount()

    # Year-over-year growth, supplied by the importer
    revenue_growth: Mapped[Decimal | None] = _ratio()
    gross_profit_growth: Mapped[Decimal | None] = _ratio()
    net_income_growth: Mapped[Decimal | None] = _ratio()
    asset_growth: Mapped[Decimal | None] = _ratio()
    receivables_growth: Mapped[Decimal | None] = _ratio()
    inventory_growth: Mapped[Decimal | None] = _ratio()
    liability_growth: Mapped[Decimal | None] = _ratio()

    statement: Mapped[FinancialStatement] = relationship(back_populates="financial_data")


# ---------------------------------------------------------------------------
# Per-statement analysis artifacts
# ---------------------------------------------------------------------------


class FinancialRatios(Base):
    __tablename__ = "financial_ratios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()
    current_ratio: Mapped[Decimal | None] = _ratio()
    quick_ratio: Mapped[Decimal | None] = _ratio()
    cash_ratio: Mapped[Decimal | None] = _ratio()
    gross_margin: Mapped[Decimal | None] = _ratio()
    operating_margin: Mapped[Decimal | None] = _ratio()
    net_profit_margin: Mapped[Decimal | None] = _ratio()
    return_on_assets: Mapped[Decimal | None] = _ratio()
    return_on_equity: Mapped[Decimal | None] = _ratio()
    asset_turnover: Mapped[Decimal | None] = _ratio()
    inventory_turnover: Mapped[Decimal | None] = _ratio()
    accounts_receivable_turnover: Mapped[Decimal | None] = _ratio()
    days_sales_outstanding: Mapped[Decimal | None] = _ratio()
    debt_to_equity: Mapped[Decimal | None] = _ratio()
    debt_ratio: Mapped[Decimal | None] = _ratio()
    interest_coverage: Mapped[Decimal | None] = _ratio()
    price_to_earnings: Mapped[Decimal | None] = _ratio()
    price_to_book: Mapped[Decimal | None] = _ratio()
    accrual_ratio: Mapped[Decimal | None] = _ratio()
    earnings_quality: Mapped[Decimal | None] = _ratio()
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class AltmanZScore(Base):
    __tablename__ = "altman_z_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()
    working_capital_to_total_assets: Mapped[Decimal | None] = _ratio()
    retained_earnings_to_total_assets: Mapped[Decimal | None] = _ratio()
    ebit_to_total_assets: Mapped[Decimal | None] = _ratio()
    market_value_equity_to_book_value_debt: Mapped[Decimal | None] = _ratio()
    sales_to_total_assets: Mapped[Decimal | None] = _ratio()
    z_score: Mapped[Decimal | None] = _ratio()
    risk_category: Mapped[str | None] = mapped_column(String(20), nullable=True)  # DISTRESS | GREY | SAFE
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class BeneishMScore(Base):
    __tablename__ = "beneish_m_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()
    days_sales_receivables_index: Mapped[Decimal | None] = _ratio()
    gross_margin_index: Mapped[Decimal | None] = _ratio()
    asset_quality_index: Mapped[Decimal | None] = _ratio()
    sales_growth_index: Mapped[Decimal | None] = _ratio()
    depreciation_index: Mapped[Decimal | None] = _ratio()
    sg_admin_expenses_index: Mapped[Decimal | None] = _ratio()
    leverage_index: Mapped[Decimal | None] = _ratio()
    total_accruals_to_total_assets: Mapped[Decimal | None] = _ratio()
    m_score: Mapped[Decimal | None] = _ratio()
    manipulation_probability: Mapped[str | None] = mapped_column(String(20), nullable=True)  # LOW | MEDIUM | HIGH
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class PiotroskiFScore(Base):
    __tablename__ = "piotroski_f_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()
    positive_net_income: Mapped[bool] = mapped_column(Boolean, default=False)
    positive_operating_cash_flow: Mapped[bool] = mapped_column(Boolean, default=False)
    cash_flow_greater_than_net_income: Mapped[bool] = mapped_column(Boolean, default=False)
    improving_roa: Mapped[bool] = mapped_column(Boolean, default=False)
    decreasing_leverage: Mapped[bool] = mapped_column(Boolean, default=False)
    improving_current_ratio: Mapped[bool] = mapped_column(Boolean, default=False)
    no_new_shares: Mapped[bool] = mapped_column(Boolean, default=False)
    improving_gross_margin: Mapped[bool] = mapped_column(Boolean, default=False)
    improving_asset_turnover: Mapped[bool] = mapped_column(Boolean, default=False)
    f_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    financial_strength: Mapped[str | None] = mapped_column(String(20), nullable=True)  # WEAK | MODERATE | STRONG
    baseline_available: Mapped[bool] = mapped_column(Boolean, default=False)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class MlFeatures(Base):
    __tablename__ = "ml_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()
    feature_set: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class MlModel(Base):
    __tablename__ = "ml_models"
    __table_args__ = (UniqueConstraint("model_name", "model_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    model_version: Mapped[str] = mapped_column(String(50), nullable=False)
    model_type: Mapped[str] = mapped_column(String(50), nullable=False)  # RANDOM_FOREST | NEURAL_NETWORK | LOGISTIC_REGRESSION
    model_path: Mapped[str] = mapped_column(String(500), default="")
    feature_list: Mapped[str] = mapped_column(Text, default="{}")
    performance_metrics: Mapped[str] = mapped_column(Text, default="{}")
    trained_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    # Holds model_type while active; the unique constraint allows one active model per type.
    active_slot: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)

    predictions: Mapped[list[MlPrediction]] = relationship(back_populates="model", cascade="all, delete-orphan")


class MlPrediction(Base):
    __tablename__ = "ml_predictions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = mapped_column(Integer, ForeignKey("financial_statements.id"), nullable=False, index=True)
    model_id: Mapped[int] = mapped_column(Integer, ForeignKey("ml_models.id"), nullable=False)
    fraud_probability: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    feature_importance: Mapped[str] = mapped_column(Text, default="{}")
    prediction_explanation: Mapped[str] = mapped_column(Text, default="")
    predicted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    model: Mapped[MlModel] = relationship(back_populates="predictions")


class FraudRiskAssessment(Base):
    __tablename__ = "fraud_risk_assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    statement_id: Mapped[int] = _statement_fk()
    z_score_risk: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    m_score_risk: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    f_score_risk: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    financial_ratio_risk: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    ml_prediction_risk: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    overall_risk_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)  # LOW | MEDIUM | HIGH | VERY_HIGH
    assessment_summary: Mapped[str] = mapped_column(Text, default="")
    assessed_by: Mapped[str] = mapped_column(String(64), default="")
    assessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    statement: Mapped[FinancialStatement] = relationship()
    alerts: Mapped[list[RiskAlert]] = relationship(back_populates="assessment", cascade="all, delete-orphan")


class RiskAlert(Base):
    __tablename__ = "risk_alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[int] = mapped_column(Integer, ForeignKey("fraud_risk_assessments.id"), nullable=False, index=True)
    alert_type: Mapped[str] = mapped_column(String(30), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    assessment: Mapped[FraudRiskAssessment] = relationship(back_populates="alerts")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


# Per-statement artifacts removed and regenerated on every recompute, in delete order.
ANALYSIS_ARTIFACTS: tuple[type[Base], ...] = (
    FraudRiskAssessment,
    MlPrediction,
    MlFeatures,
    PiotroskiFScore,
    BeneishMScore,
    AltmanZScore,
    FinancialRatios,
)
