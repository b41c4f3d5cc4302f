"""Risk aggregation: five 0-100 sub-risks folded into one weighted score and level."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from fraudit import audit, stores
from fraudit.errors import MissingPrerequisiteError
from fraudit.models import (
    AltmanZScore, BeneishMScore, FinancialRatios, FinancialStatement, FinancialStrength,
    FraudRiskAssessment, ManipulationProbability, MlPrediction, PiotroskiFScore, RiskCategory,
    RiskLevel,
)
from fraudit.utils import TWO_PLACES, quantize

log = logging.getLogger(__name__)

NEUTRAL_RISK = Decimal("50.00")

WEIGHTS = {
    "z_score_risk": Decimal("0.20"),
    "m_score_risk": Decimal("0.25"),
    "f_score_risk": Decimal("0.15"),
    "financial_ratio_risk": Decimal("0.15"),
    "ml_prediction_risk": Decimal("0.25"),
}


@dataclass(frozen=True)
class SubRisks:
    z_score_risk: Decimal
    m_score_risk: Decimal
    f_score_risk: Decimal
    financial_ratio_risk: Decimal
    ml_prediction_risk: Decimal


def distress_risk(z_score: Decimal | None) -> Decimal:
    if z_score is None:
        return NEUTRAL_RISK
    if z_score < Decimal("1.8"):
        return Decimal("80.00")
    if z_score < Decimal("3.0"):
        return Decimal("50.00")
    return Decimal("20.00")


def manipulation_risk(m_score: Decimal | None) -> Decimal:
    if m_score is None:
        return NEUTRAL_RISK
    if m_score > Decimal("-1.78"):
        return Decimal("85.00")
    if m_score > Decimal("-2.22"):
        return Decimal("60.00")
    return Decimal("25.00")


def strength_risk(f_score: int | None) -> Decimal:
    if f_score is None:
        return NEUTRAL_RISK
    if f_score <= 3:
        return Decimal("75.00")
    if f_score <= 6:
        return Decimal("45.00")
    return Decimal("20.00")


def ratio_quality_risk(accrual_ratio: Decimal | None, earnings_quality: Decimal | None) -> Decimal:
    if accrual_ratio is None or earnings_quality is None:
        return NEUTRAL_RISK
    if accrual_ratio > Decimal("0.10"):
        accrual_part = Decimal(70)
    elif accrual_ratio > Decimal("0.05"):
        accrual_part = Decimal(40)
    else:
        accrual_part = Decimal(20)
    if earnings_quality < Decimal("0.8"):
        quality_part = Decimal(75)
    elif earnings_quality < Decimal("1.0"):
        quality_part = Decimal(45)
    else:
        quality_part = Decimal(25)
    return quantize((accrual_part + quality_part) / 2, TWO_PLACES)


def prediction_risk(probability: Decimal) -> Decimal:
    return quantize(Decimal(probability) * 100, TWO_PLACES)


def overall_risk(sub: SubRisks) -> Decimal:
    total = sum((getattr(sub, name) * weight for name, weight in WEIGHTS.items()), Decimal(0))
    return quantize(total, TWO_PLACES)


def risk_level(score: Decimal) -> RiskLevel:
    if score >= 75:
        return RiskLevel.VERY_HIGH
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def compute_sub_risks(
    distress: AltmanZScore,
    manipulation: BeneishMScore,
    strength: PiotroskiFScore,
    ratios: FinancialRatios,
    prediction: MlPrediction,
) -> SubRisks:
    return SubRisks(
        z_score_risk=distress_risk(distress.z_score),
        m_score_risk=manipulation_risk(manipulation.m_score),
        f_score_risk=strength_risk(strength.f_score),
        financial_ratio_risk=ratio_quality_risk(ratios.accrual_ratio, ratios.earnings_quality),
        ml_prediction_risk=prediction_risk(prediction.fraud_probability),
    )


def _or_na(value) -> str:
    return "N/A" if value is None else str(value)


def build_summary(
    statement: FinancialStatement,
    sub: SubRisks,
    overall: Decimal,
    level: RiskLevel,
    distress: AltmanZScore,
    manipulation: BeneishMScore,
    strength: PiotroskiFScore,
    prediction: MlPrediction,
) -> str:
    fiscal_year = statement.fiscal_year
    findings = []
    if distress.risk_category == RiskCategory.DISTRESS:
        findings.append("- Company shows signs of financial distress based on Z-Score analysis.")
    if manipulation.manipulation_probability == ManipulationProbability.HIGH:
        findings.append("- High probability of earnings manipulation based on M-Score analysis.")
    if strength.financial_strength == FinancialStrength.WEAK:
        findings.append("- Weak financial strength based on F-Score analysis.")
    if prediction.fraud_probability > Decimal("0.6"):
        findings.append("- Prediction model indicates high likelihood of fraudulent reporting.")
    if not findings:
        findings.append("- No individual signal crossed its risk threshold.")

    lines = [
        f"Fraud Risk Assessment for {fiscal_year.company.name} ({fiscal_year.year} {statement.statement_type})",
        "",
        f"Overall Risk Score: {overall} ({level.value})",
        "",
        "Component Risk Scores:",
        f"- Altman Z-Score: {sub.z_score_risk} ({_or_na(distress.z_score)})",
        f"- Beneish M-Score: {sub.m_score_risk} ({_or_na(manipulation.m_score)})",
        f"- Piotroski F-Score: {sub.f_score_risk} ({_or_na(strength.f_score)})",
        f"- Financial Ratios: {sub.financial_ratio_risk}",
        f"- ML Prediction: {sub.ml_prediction_risk}",
        "",
        "Key Findings:",
        *findings,
        "",
        "This assessment is based on quantitative analysis of financial data. "
        "Further qualitative analysis of financial disclosures is recommended.",
    ]
    return "\n".join(lines)


def _require(session: Session, model, label: str, statement_id: int):
    row = stores.find_by_statement(session, model, statement_id)
    if row is None:
        raise MissingPrerequisiteError(label, statement_id)
    return row


def assess(session: Session, statement_id: int, user_id: str | None = None) -> FraudRiskAssessment:
    """Aggregate the stored signals into a fresh assessment. Caller must commit."""
    statement = stores.get_statement(session, statement_id)
    distress = _require(session, AltmanZScore, "Altman Z-Score", statement_id)
    manipulation = _require(session, BeneishMScore, "Beneish M-Score", statement_id)
    strength = _require(session, PiotroskiFScore, "Piotroski F-Score", statement_id)
    ratios = _require(session, FinancialRatios, "Financial ratios", statement_id)
    prediction = stores.find_latest_active_prediction(session, statement_id)
    if prediction is None:
        raise MissingPrerequisiteError("ML prediction", statement_id)

    sub = compute_sub_risks(distress, manipulation, strength, ratios, prediction)
    overall = overall_risk(sub)
    level = risk_level(overall)
    summary = build_summary(statement, sub, overall, level, distress, manipulation, strength, prediction)

    stores.delete_by_statement(session, FraudRiskAssessment, statement_id)
    assessment = FraudRiskAssessment(
        statement_id=statement_id,
        z_score_risk=sub.z_score_risk,
        m_score_risk=sub.m_score_risk,
        f_score_risk=sub.f_score_risk,
        financial_ratio_risk=sub.financial_ratio_risk,
        ml_prediction_risk=sub.ml_prediction_risk,
        overall_risk_score=overall,
        risk_level=level.value,
        assessment_summary=summary,
        assessed_by=statement.user_id or (user_id or ""),
    )
    session.add(assessment)
    session.flush()
    audit.record(
        session, "ASSESS", "FRAUD_RISK", assessment.id,
        f"Generated fraud risk assessment for statement id: {statement_id}. "
        f"Risk level: {level.value}, score: {overall}",
        user_id,
    )
    log.info("Statement %s assessed at %s (%s)", statement_id, overall, level.value)
    return assessment
