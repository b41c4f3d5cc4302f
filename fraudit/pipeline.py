"""Single-statement analysis: one transactional recompute of every artifact."""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from fraudit import alerts, audit, features, predictor, risk, stores
from fraudit.models import ANALYSIS_ARTIFACTS, FraudRiskAssessment, StatementStatus
from fraudit.ratios import calculate_ratios, persist_ratios
from fraudit.scores import (
    calculate_distress, calculate_manipulation, calculate_strength,
    persist_distress, persist_manipulation, persist_strength,
)

log = logging.getLogger(__name__)


def delete_existing_analysis(session: Session, statement_id: int) -> int:
    """Remove every per-statement artifact (alerts go with their assessment)."""
    removed = 0
    for model in ANALYSIS_ARTIFACTS:
        removed += stores.delete_by_statement(session, model, statement_id)
    if removed:
        log.debug("Removed %d prior analysis rows for statement %s", removed, statement_id)
    return removed


def run_analysis(session: Session, statement_id: int, user_id: str | None = None) -> FraudRiskAssessment:
    """Recompute the full analysis for one statement. Caller must commit.

    On any failure the caller rolls back, leaving the previous analysis intact.
    """
    statement = stores.get_statement(session, statement_id)
    data = stores.require_financial_data(session, statement_id)

    delete_existing_analysis(session, statement_id)

    persist_ratios(session, statement_id, calculate_ratios(data))
    persist_distress(session, statement_id, calculate_distress(data))
    persist_manipulation(session, statement_id, calculate_manipulation(data))
    prior = stores.find_prior_financial_data(session, statement)
    persist_strength(session, statement_id, calculate_strength(data, prior))
    audit.record(session, "CALCULATE", "FINANCIAL_ANALYSIS", statement_id,
                 f"Calculated ratios and scores for statement id: {statement_id}", user_id)

    features.generate_features(session, statement_id, user_id)
    predictor.predict(session, statement_id, user_id)
    assessment = risk.assess(session, statement_id, user_id)
    alerts.generate_alerts(session, assessment.id, user_id)

    statement.status = StatementStatus.ANALYZED.value
    session.flush()
    log.info("Analysis complete for statement %s: %s", statement_id, assessment.risk_level)
    return assessment


def analyze_statement(statement_id: int, user_id: str | None = None, *, session_factory) -> bool:
    """Manually trigger analysis in its own unit of work. Returns success."""
    session = session_factory()
    try:
        run_analysis(session, statement_id, user_id)
        audit.record(session, "MANUAL_ANALYZE", "FINANCIAL_STATEMENT", statement_id,
                     f"Manually triggered analysis for statement id: {statement_id}", user_id)
        session.commit()
        return True
    except Exception as e:
        session.rollback()
        log.exception("Manual analysis failed for statement %s", statement_id)
        audit.record_isolated(session_factory, "MANUAL_ANALYZE_ERROR", "FINANCIAL_STATEMENT", statement_id,
                              f"Error analyzing statement id: {statement_id}. Error: {e}", user_id)
        return False
    finally:
        session.close()
