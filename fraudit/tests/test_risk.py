from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from fraudit import risk
from fraudit.errors import MissingPrerequisiteError
from fraudit.features import generate_features
from fraudit.models import AuditLog, FraudRiskAssessment, RiskLevel
from fraudit.predictor import predict
from fraudit.ratios import calculate_ratios, persist_ratios
from fraudit.registry import deactivate_model
from fraudit.scores import (
    calculate_distress, calculate_manipulation, calculate_strength, persist_distress,
    persist_manipulation, persist_strength,
)
from fraudit.tests.factories import HEALTHY, RISKY, financial_data


def _predicted(session, make_statement, values, **kwargs):
    statement = make_statement(session, values, **kwargs)
    data = financial_data(values)
    persist_ratios(session, statement.id, calculate_ratios(data))
    persist_distress(session, statement.id, calculate_distress(data))
    persist_manipulation(session, statement.id, calculate_manipulation(data))
    persist_strength(session, statement.id, calculate_strength(data))
    generate_features(session, statement.id)
    predict(session, statement.id)
    return statement


# =========================================================================
# Sub-risk buckets
# =========================================================================

class TestSubRisks:
    @pytest.mark.parametrize("z,expected", [
        (None, "50.00"), ("1.7999", "80.00"), ("1.8", "50.00"), ("2.9999", "50.00"), ("3.0", "20.00"),
    ])
    def test_distress(self, z, expected):
        assert risk.distress_risk(Decimal(z) if z else None) == Decimal(expected)

    @pytest.mark.parametrize("m,expected", [
        (None, "50.00"), ("-1.77", "85.00"), ("-1.78", "60.00"), ("-2.22", "25.00"),
    ])
    def test_manipulation(self, m, expected):
        assert risk.manipulation_risk(Decimal(m) if m else None) == Decimal(expected)

    @pytest.mark.parametrize("f,expected", [(None, "50.00"), (3, "75.00"), (4, "45.00"), (7, "20.00")])
    def test_strength(self, f, expected):
        assert risk.strength_risk(f) == Decimal(expected)

    def test_ratio_quality_is_mean_of_parts(self):
        assert risk.ratio_quality_risk(Decimal("0.15"), Decimal("0.5")) == Decimal("72.50")
        assert risk.ratio_quality_risk(Decimal("0.06"), Decimal("0.9")) == Decimal("42.50")
        assert risk.ratio_quality_risk(Decimal("0.0"), Decimal("1.2")) == Decimal("22.50")
        assert risk.ratio_quality_risk(None, Decimal("1.2")) == risk.NEUTRAL_RISK

    def test_prediction(self):
        assert risk.prediction_risk(Decimal("0.1234")) == Decimal("12.34")


class TestOverall:
    def test_lowest_buckets_are_low(self):
        sub = risk.SubRisks(
            z_score_risk=Decimal("20"), m_score_risk=Decimal("25"), f_score_risk=Decimal("20"),
            financial_ratio_risk=Decimal("25"), ml_prediction_risk=risk.prediction_risk(Decimal("0.10")),
        )
        overall = risk.overall_risk(sub)
        assert overall == Decimal("19.50")
        assert risk.risk_level(overall) == RiskLevel.LOW

    def test_weights_sum_to_one(self):
        assert sum(risk.WEIGHTS.values()) == Decimal("1.00")

    def test_neutral_everywhere_is_medium(self):
        neutral = risk.NEUTRAL_RISK
        sub = risk.SubRisks(neutral, neutral, neutral, neutral, neutral)
        assert risk.overall_risk(sub) == Decimal("50.00")
        assert risk.risk_level(risk.overall_risk(sub)) == RiskLevel.MEDIUM

    @pytest.mark.parametrize("score,level", [
        ("39.99", RiskLevel.LOW), ("40", RiskLevel.MEDIUM), ("59.99", RiskLevel.MEDIUM),
        ("60", RiskLevel.HIGH), ("74.99", RiskLevel.HIGH), ("75", RiskLevel.VERY_HIGH),
    ])
    def test_level_boundaries(self, score, level):
        assert risk.risk_level(Decimal(score)) == level


# =========================================================================
# assess
# =========================================================================

class TestAssess:
    def test_healthy_statement(self, session, make_statement, active_model):
        active_model(session)
        statement = _predicted(session, make_statement, HEALTHY)
        assessment = risk.assess(session, statement.id, "analyst")
        session.commit()

        assert assessment.z_score_risk == Decimal("20.00")
        assert assessment.m_score_risk == Decimal("25.00")
        assert assessment.f_score_risk == Decimal("20.00")
        assert assessment.financial_ratio_risk == Decimal("22.50")
        assert assessment.ml_prediction_risk == Decimal("5.00")
        assert assessment.overall_risk_score == Decimal("17.88")
        assert assessment.risk_level == "LOW"
        assert assessment.assessed_by == "uploader-1"
        assert "No individual signal crossed its risk threshold." in assessment.assessment_summary
        assert assessment.assessment_summary.startswith("Fraud Risk Assessment for Acme Corp (2023 ANNUAL)")

    def test_risky_statement(self, session, make_statement, active_model):
        active_model(session)
        statement = _predicted(session, make_statement, RISKY)
        assessment = risk.assess(session, statement.id)
        assert assessment.overall_risk_score == Decimal("77.38")
        assert assessment.risk_level == "VERY_HIGH"
        summary = assessment.assessment_summary
        assert "signs of financial distress" in summary
        assert "earnings manipulation" in summary
        assert "high likelihood of fraudulent reporting" in summary
        assert "Weak financial strength" not in summary

    def test_assessor_falls_back_to_caller(self, session, make_statement, active_model):
        active_model(session)
        statement = _predicted(session, make_statement, HEALTHY, user_id="")
        assert risk.assess(session, statement.id, "reviewer").assessed_by == "reviewer"

    def test_reassessing_replaces_row(self, session, make_statement, active_model):
        active_model(session)
        statement = _predicted(session, make_statement, HEALTHY)
        risk.assess(session, statement.id)
        risk.assess(session, statement.id)
        session.commit()
        rows = session.scalars(
            select(FraudRiskAssessment).where(FraudRiskAssessment.statement_id == statement.id)
        ).all()
        assert len(rows) == 1
        assert len(session.scalars(select(AuditLog).where(AuditLog.action == "ASSESS")).all()) == 2

    def test_prediction_from_inactive_model_is_ignored(self, session, make_statement, active_model):
        model = active_model(session)
        statement = _predicted(session, make_statement, HEALTHY)
        deactivate_model(session, model.id)
        with pytest.raises(MissingPrerequisiteError, match="ML prediction"):
            risk.assess(session, statement.id)

    def test_missing_scores(self, session, make_statement):
        statement = make_statement(session, HEALTHY)
        with pytest.raises(MissingPrerequisiteError, match="Altman Z-Score"):
            risk.assess(session, statement.id)
