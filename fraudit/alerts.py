"""Risk alerts raised from an assessment, plus resolution and lookup."""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from fraudit import audit
from fraudit.errors import InvalidStateError, MissingPrerequisiteError
from fraudit.models import AlertSeverity, AlertType, FraudRiskAssessment, RiskAlert, RiskLevel
from fraudit.utils import utc_now

log = logging.getLogger(__name__)

COMPONENT_ALERT_THRESHOLD = Decimal("70")

# (assessment attribute, alert type, message template)
COMPONENT_ALERTS = (
    ("z_score_risk", AlertType.Z_SCORE,
     "Financial distress indicated by Altman Z-Score analysis for {company}"),
    ("m_score_risk", AlertType.M_SCORE,
     "Potential earnings manipulation detected by Beneish M-Score for {company}"),
    ("f_score_risk", AlertType.F_SCORE,
     "Weak financial strength indicated by Piotroski F-Score for {company}"),
    ("ml_prediction_risk", AlertType.ML_PREDICTION,
     "Prediction model indicates high fraud probability for {company}"),
)


def planned_alerts(
    level: str, sub_risks: dict[str, Decimal | None], company: str = "", year: int | str = "",
    overall: Decimal | None = None,
) -> list[tuple[AlertType, AlertSeverity, str]]:
    """Alerts an assessment with these values produces, without touching the database."""
    planned = []
    if level in (RiskLevel.HIGH, RiskLevel.VERY_HIGH):
        planned.append((
            AlertType.OVERALL_RISK,
            AlertSeverity(level),
            f"High overall fraud risk detected for {company} ({year}). Score: {overall}",
        ))
    for attr, alert_type, template in COMPONENT_ALERTS:
        value = sub_risks.get(attr)
        if value is not None and value >= COMPONENT_ALERT_THRESHOLD:
            planned.append((alert_type, AlertSeverity.HIGH, template.format(company=company)))
    return planned


def generate_alerts(session: Session, assessment_id: int, user_id: str | None = None) -> list[RiskAlert]:
    """Create the alerts for an assessment. Caller must commit."""
    assessment = session.get(FraudRiskAssessment, assessment_id)
    if assessment is None:
        raise MissingPrerequisiteError("Fraud risk assessment", detail=f"id {assessment_id}")
    fiscal_year = assessment.statement.fiscal_year
    sub_risks = {attr: getattr(assessment, attr) for attr, _, _ in COMPONENT_ALERTS}

    alerts = []
    for alert_type, severity, message in planned_alerts(
        assessment.risk_level, sub_risks, fiscal_year.company.name, fiscal_year.year,
        assessment.overall_risk_score,
    ):
        alert = RiskAlert(
            assessment_id=assessment.id,
            alert_type=alert_type.value,
            severity=severity.value,
            message=message,
            is_resolved=False,
        )
        session.add(alert)
        alerts.append(alert)
    session.flush()
    audit.record(session, "GENERATE", "RISK_ALERTS", assessment.id,
                 f"Generated {len(alerts)} risk alerts for assessment id: {assessment.id}", user_id)
    return alerts


def resolve_alert(session: Session, alert_id: int, resolver_id: str, notes: str = "") -> RiskAlert:
    alert = session.get(RiskAlert, alert_id)
    if alert is None:
        raise MissingPrerequisiteError("Risk alert", detail=f"id {alert_id}")
    if alert.is_resolved:
        raise InvalidStateError(f"Alert {alert_id} is already resolved")
    alert.is_resolved = True
    alert.resolved_by = resolver_id
    alert.resolved_at = utc_now()
    alert.resolution_notes = notes
    session.flush()
    audit.record(session, "RESOLVE", "RISK_ALERT", alert.id, f"Resolved alert: {notes}", resolver_id)
    return alert


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _alerts(session: Session, *criteria) -> list[RiskAlert]:
    stmt = select(RiskAlert).where(*criteria).order_by(RiskAlert.created_at.desc(), RiskAlert.id.desc())
    return list(session.execute(stmt).scalars())


def find_unresolved(session: Session) -> list[RiskAlert]:
    return _alerts(session, RiskAlert.is_resolved.is_(False))


def find_by_severity(session: Session, severity: str | AlertSeverity) -> list[RiskAlert]:
    return _alerts(session, RiskAlert.severity == AlertSeverity(str(severity).upper()).value)


def find_by_type(session: Session, alert_type: str | AlertType) -> list[RiskAlert]:
    return _alerts(session, RiskAlert.alert_type == AlertType(str(alert_type).upper()).value)


def find_by_assessment(session: Session, assessment_id: int) -> list[RiskAlert]:
    return _alerts(session, RiskAlert.assessment_id == assessment_id)
