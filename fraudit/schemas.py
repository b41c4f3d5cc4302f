"""Pydantic response schemas used by the CLI's JSON and table output."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer

# Decimal columns render as JSON numbers rather than strings.
Score = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class _Orm(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AlertOut(_Orm):
    id: int
    assessment_id: int
    alert_type: str
    severity: str
    message: str
    is_resolved: bool
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    created_at: datetime | None = None


class AssessmentOut(_Orm):
    id: int
    statement_id: int
    z_score_risk: Score | None = None
    m_score_risk: Score | None = None
    f_score_risk: Score | None = None
    financial_ratio_risk: Score | None = None
    ml_prediction_risk: Score | None = None
    overall_risk_score: Score
    risk_level: str
    assessment_summary: str = ""
    assessed_by: str = ""
    assessed_at: datetime | None = None
    alerts: list[AlertOut] = []


class ModelOut(_Orm):
    id: int
    model_name: str
    model_version: str
    model_type: str
    model_path: str = ""
    is_active: bool
    trained_at: datetime | None = None


class BatchResultOut(BaseModel):
    processed: int
    errors: int


class FeatureBatchOut(BaseModel):
    processed: int
    succeeded: int
    failed: int
    errors: dict[int, str] = {}
