"""Fraud probability prediction over a statement's feature set.

Architecture
------------
A registered :class:`MlModel` carries a type tag. Each tag maps to one
scoring strategy:

- ``RANDOM_FOREST`` counts red flags and maps the count to a fixed
  probability bucket.
- ``NEURAL_NETWORK`` sums importance-weighted threshold deviations and
  passes the sum through a sigmoid.
- ``LOGISTIC_REGRESSION`` blends red-flag indicators with per-feature
  coefficients into a logit.

Every strategy reads its feature ordering from the model's ``feature_list``
(falling back to ``DEFAULT_FEATURE_ORDER``) and weights each feature by its
rank in that ordering: the first feature gets the largest entry of
``RANK_WEIGHTS``, the next one the second, and so on. A feature whose value
is missing is skipped: it raises no flag and contributes nothing. The
probability is then scaled by the model's reported accuracy. If a strategy
raises, the predictor substitutes a three-factor estimate built from the
classic scores and marks the result as a fallback.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy.orm import Session

from fraudit import audit, registry, stores
from fraudit.config import get_settings
from fraudit.errors import InvalidStateError, MissingPrerequisiteError
from fraudit.features import FeatureMap, normalize_features
from fraudit.models import MlFeatures, MlModel, MlPrediction, ModelType
from fraudit.utils import json_parse, quantize, to_json

log = logging.getLogger(__name__)

# feature -> (threshold, direction); direction +1 flags values above, -1 values below
RED_FLAG_RULES: dict[str, tuple[float, int]] = {
    "m_score": (-1.78, 1),
    "accrual_ratio": (0.10, 1),
    "z_score": (1.8, -1),
    "earnings_quality": (0.8, -1),
    "days_sales_receivables_index": (1.465, 1),
    "total_accruals_to_total_assets": (0.031, 1),
    "asset_quality_index": (1.254, 1),
    "sales_growth_index": (1.607, 1),
    "leverage_index": (1.111, 1),
}
DEFAULT_FEATURE_ORDER: tuple[str, ...] = tuple(RED_FLAG_RULES)

# Weight by position in the model's feature ordering, highest first
RANK_WEIGHTS = (0.25, 0.15, 0.15, 0.10, 0.10, 0.10, 0.08, 0.07, 0.05)

# red-flag count -> probability; counts past the end use the last bucket
COUNT_BUCKETS = (0.05, 0.20, 0.40, 0.60, 0.75, 0.90)
SIGMOID_GAIN = 4.0
MAX_DEVIATION = 3.0
LOGISTIC_INTERCEPT = -2.0
LOGISTIC_SCALE = 6.0

FALLBACK_IMPORTANCE = {"m_score": 0.40, "z_score": 0.35, "f_score": 0.25}
NEUTRAL_PROBABILITY = 0.5

FEATURE_PHRASES = {
    "m_score": "Beneish M-Score indicates potential earnings manipulation",
    "accrual_ratio": "Accrual ratio shows a gap between reported earnings and cash flow",
    "z_score": "Altman Z-Score indicates financial distress",
    "earnings_quality": "Earnings quality is weak relative to operating cash flow",
    "days_sales_receivables_index": "Receivables grew unusually fast relative to sales",
    "total_accruals_to_total_assets": "High accruals relative to total assets suggest earnings management",
    "asset_quality_index": "Asset quality index suggests capitalization of expenses",
    "sales_growth_index": "Sales growth pattern may be unsustainable",
    "leverage_index": "Leverage is increasing",
}
FEATURE_LABELS = {
    "m_score": "Beneish M-Score",
    "accrual_ratio": "Accrual Ratio",
    "z_score": "Altman Z-Score",
    "earnings_quality": "Earnings Quality",
    "days_sales_receivables_index": "Days Sales Receivables Index",
    "total_accruals_to_total_assets": "Total Accruals to Total Assets",
    "asset_quality_index": "Asset Quality Index",
    "sales_growth_index": "Sales Growth Index",
    "leverage_index": "Leverage Index",
    "f_score": "Piotroski F-Score",
}
MAX_EXPLANATION_FACTORS = 3


@dataclass
class StrategyResult:
    probability: float
    contributions: list[tuple[str, float]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def model_feature_order(model: MlModel) -> tuple[str, ...]:
    """Scored features in the model's index order, or the default ordering."""
    index_map = json_parse(model.feature_list, None)
    if isinstance(index_map, dict) and index_map:
        try:
            ordered = sorted(index_map, key=lambda name: float(index_map[name]))
        except (TypeError, ValueError):
            ordered = []
        known = tuple(name for name in ordered if name in RED_FLAG_RULES)
        if known:
            return known
    return DEFAULT_FEATURE_ORDER


def model_accuracy(model: MlModel) -> float | None:
    metrics = json_parse(model.performance_metrics, {})
    if not isinstance(metrics, dict):
        return None
    value = metrics.get("accuracy")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    accuracy = float(value)
    if accuracy > 1:
        accuracy /= 100.0
    return _clamp(accuracy)


def rank_weights(order: tuple[str, ...]) -> dict[str, float]:
    """Map each feature to the weight of its position in *order*."""
    return {name: RANK_WEIGHTS[min(i, len(RANK_WEIGHTS) - 1)] for i, name in enumerate(order)}


def is_red_flag(feature: str, value: float | None) -> bool:
    if value is None:
        return False
    threshold, direction = RED_FLAG_RULES[feature]
    return value > threshold if direction > 0 else value < threshold


def _value(features: FeatureMap, feature: str) -> float | None:
    value = features.get(feature)
    return None if value is None else float(value)


def _ranked(pairs: list[tuple[str, float]]) -> list[tuple[str, float]]:
    return sorted(pairs, key=lambda p: p[1], reverse=True)


class ScoringStrategy:
    """Maps a feature map to a fraud probability for one registered model."""

    name = "base"

    def __init__(self, model: MlModel):
        self.model = model
        self.feature_order = model_feature_order(model)
        self.weights = rank_weights(self.feature_order)

    def raw_score(self, features: FeatureMap) -> StrategyResult:
        raise NotImplementedError

    def present(self, features: FeatureMap) -> list[tuple[str, float]]:
        """Ordered (feature, value) pairs, skipping missing values."""
        values = ((name, _value(features, name)) for name in self.feature_order)
        return [(name, value) for name, value in values if value is not None]

    def score(self, features: FeatureMap) -> StrategyResult:
        result = self.raw_score(features)
        checked = len(self.present(features))
        accuracy = model_accuracy(self.model)
        probability = result.probability
        if accuracy is not None:
            probability *= accuracy
        result.probability = _clamp(probability)
        result.metadata.update({
            "strategy": self.name,
            "model_version": self.model.model_version,
            "accuracy": accuracy,
            "features_checked": checked,
            "features_missing": len(self.feature_order) - checked,
        })
        return result


class CountingStrategy(ScoringStrategy):
    name = "red_flag_count"

    def raw_score(self, features: FeatureMap) -> StrategyResult:
        flagged = [f for f, value in self.present(features) if is_red_flag(f, value)]
        bucket = COUNT_BUCKETS[min(len(flagged), len(COUNT_BUCKETS) - 1)]
        return StrategyResult(
            probability=bucket,
            contributions=_ranked([(f, self.weights[f]) for f in flagged]),
            metadata={"red_flags": len(flagged)},
        )


class WeightedSigmoidStrategy(ScoringStrategy):
    name = "weighted_sigmoid"

    def raw_score(self, features: FeatureMap) -> StrategyResult:
        contributions = []
        for feature, value in self.present(features):
            threshold, direction = RED_FLAG_RULES[feature]
            scale = max(abs(threshold), 1.0)
            deviation = _clamp(direction * (value - threshold) / scale, -MAX_DEVIATION, MAX_DEVIATION)
            contributions.append((feature, self.weights[feature] * deviation))
        raw = sum(c for _, c in contributions)
        return StrategyResult(
            probability=_sigmoid(SIGMOID_GAIN * raw),
            contributions=_ranked(contributions),
            metadata={"raw_score": round(raw, 6)},
        )


class LogisticBlendStrategy(ScoringStrategy):
    name = "logistic_blend"

    def raw_score(self, features: FeatureMap) -> StrategyResult:
        contributions = []
        flags = 0
        for feature, value in self.present(features):
            flagged = is_red_flag(feature, value)
            flags += flagged
            contributions.append((feature, LOGISTIC_SCALE * self.weights[feature] * flagged))
        logit = LOGISTIC_INTERCEPT + sum(c for _, c in contributions)
        return StrategyResult(
            probability=_sigmoid(logit),
            contributions=_ranked(contributions),
            metadata={"logit": round(logit, 6), "red_flags": flags},
        )


STRATEGIES: dict[ModelType, type[ScoringStrategy]] = {
    ModelType.RANDOM_FOREST: CountingStrategy,
    ModelType.NEURAL_NETWORK: WeightedSigmoidStrategy,
    ModelType.LOGISTIC_REGRESSION: LogisticBlendStrategy,
}


def strategy_for(model: MlModel) -> ScoringStrategy:
    """Instantiate the strategy for the model's type. Raises UnknownModelTypeError."""
    return STRATEGIES[registry.parse_model_type(model.model_type)](model)


# ---------------------------------------------------------------------------
# Fallback estimate
# ---------------------------------------------------------------------------


def _number(features: Mapping[str, Any], key: str) -> float | None:
    value = features.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def fallback_estimate(features: Mapping[str, Any], error: str = "") -> StrategyResult:
    """Three-factor estimate from the distress, manipulation and strength scores."""
    z_score = _number(features, "z_score")
    m_score = _number(features, "m_score")
    f_score = _number(features, "f_score") or 0.0

    probability = NEUTRAL_PROBABILITY
    if z_score is not None and m_score is not None:
        z_part = 0.4 if z_score < 1.8 else 0.2 if z_score < 3.0 else 0.1
        m_part = 0.4 if m_score > -1.78 else 0.3 if m_score > -2.22 else 0.1
        f_part = 0.3 if f_score <= 3 else 0.2 if f_score <= 6 else 0.1
        probability = (z_part + m_part + f_part) / 3
    return StrategyResult(
        probability=probability,
        contributions=_ranked(list(FALLBACK_IMPORTANCE.items())),
        metadata={"strategy": "fallback", "fallback": True, "error": error},
    )


def score_features(model: MlModel, raw_features: Mapping[str, Any]) -> StrategyResult:
    strategy = strategy_for(model)
    try:
        return strategy.score(normalize_features(raw_features))
    except Exception as e:
        log.warning("Strategy %s failed for model %s, using fallback estimate: %s",
                    strategy.name, model.id, e, exc_info=True)
        return fallback_estimate(raw_features, f"{type(e).__name__}: {e}")


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------


def probability_band(probability: float) -> str:
    if probability < 0.25:
        return "very low"
    if probability < 0.5:
        return "low"
    if probability < 0.75:
        return "moderate"
    return "high"


def describe_feature(feature: str) -> str:
    phrase = FEATURE_PHRASES.get(feature)
    if phrase is not None:
        return phrase
    return f"{feature.replace('_', ' ').capitalize()} deviates from typical norms for comparable filings"


def generate_explanation(probability: float, contributions: list[tuple[str, float]]) -> str:
    lines = [
        f"The model estimates a {probability_band(probability)} risk of fraudulent reporting "
        f"({round(probability * 100)}% probability)."
    ]
    factors = [(f, w) for f, w in contributions if w > 0][:MAX_EXPLANATION_FACTORS]
    if factors:
        lines.append("")
        lines.append("Key factors:")
        lines.extend(f"- {describe_feature(f)} (weight {w:.2f})" for f, w in factors)
    lines.append("")
    lines.append("This assessment is algorithmic and should be complemented with manual review.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Model selection and prediction
# ---------------------------------------------------------------------------


def select_model(
    session: Session,
    preferred_type: str | ModelType | None = None,
    user_id: str | None = None,
) -> MlModel:
    """Pick the model to predict with, auto-activating the newest one if none is active."""
    preferred = preferred_type or get_settings().preferred_model_type
    candidates = registry.find_active(session, preferred) or registry.find_active(session)
    if candidates:
        return candidates[0]

    latest = registry.find_latest_trained(session)
    if latest is None:
        raise MissingPrerequisiteError("ML model", detail="no models are registered")
    registry.activate_model(session, latest.id, user_id)
    log.warning("No active model; auto-activated %s %s (%s)",
                latest.model_name, latest.model_version, latest.model_type)
    audit.record(session, "AUTO_ACTIVATE", "ML_MODEL", latest.id,
                 f"Automatically activated model {latest.model_name} ({latest.model_version})", user_id)
    return latest


def _store_prediction(
    session: Session, statement_id: int, model: MlModel, result: StrategyResult,
) -> MlPrediction:
    probability = min(max(quantize(Decimal(str(result.probability))), Decimal(0)), Decimal(1))
    prediction = MlPrediction(
        statement_id=statement_id,
        model_id=model.id,
        fraud_probability=probability,
        feature_importance=to_json(dict(result.contributions)),
        prediction_explanation=generate_explanation(float(probability), result.contributions),
    )
    session.add(prediction)
    session.flush()
    return prediction


def _load_raw_features(session: Session, statement_id: int) -> dict[str, Any]:
    row = stores.find_by_statement(session, MlFeatures, statement_id)
    if row is None:
        raise MissingPrerequisiteError("ML features", statement_id)
    raw = json_parse(row.feature_set, {})
    return raw if isinstance(raw, dict) else {}


def predict(
    session: Session,
    statement_id: int,
    user_id: str | None = None,
    *,
    model: MlModel | None = None,
    preferred_type: str | ModelType | None = None,
) -> MlPrediction:
    """Score the statement's feature set and store the prediction. Caller must commit."""
    stores.get_statement(session, statement_id)
    raw = _load_raw_features(session, statement_id)
    model = model or select_model(session, preferred_type, user_id)
    result = score_features(model, raw)
    prediction = _store_prediction(session, statement_id, model, result)
    audit.record(
        session, "PREDICT", "ML_PREDICTION", prediction.id,
        f"Generated ML prediction for statement id: {statement_id}. "
        f"Fraud probability: {prediction.fraud_probability}"
        + (" (fallback)" if result.metadata.get("fallback") else ""),
        user_id,
    )
    return prediction


def risk_band(probability: float) -> str:
    if probability >= 0.7:
        return "HIGH"
    if probability >= 0.4:
        return "MEDIUM"
    return "LOW"


def batch_predict(
    session: Session, model_id: int, statement_ids: list[int], user_id: str | None = None,
) -> dict[str, Any]:
    """Predict many statements with one active model, skipping the ones that fail.

    Each statement runs inside its own savepoint, so a failed flush rolls
    back only that statement's writes and leaves the session usable.
    """
    model = registry.get_model(session, model_id)
    if not model.is_active:
        raise InvalidStateError("Model is not active. Activate it before using it for prediction.")

    counts = {"HIGH": 0, "MEDIUM": 0, "LOW": 0}
    predictions = []
    for statement_id in statement_ids:
        try:
            with session.begin_nested():
                prediction = predict(session, statement_id, user_id, model=model)
        except Exception as e:
            log.warning("Batch prediction skipped statement %s: %s", statement_id, e)
            continue
        statement = stores.get_statement(session, statement_id)
        probability = float(prediction.fraud_probability)
        band = risk_band(probability)
        counts[band] += 1
        importance = json_parse(prediction.feature_importance, {})
        top = sorted(importance, key=lambda k: importance[k], reverse=True)[:MAX_EXPLANATION_FACTORS]
        predictions.append({
            "statement_id": statement_id,
            "company_name": statement.fiscal_year.company.name,
            "fiscal_year": statement.fiscal_year.year,
            "fraud_probability": probability,
            "risk_level": band,
            "top_indicators": [FEATURE_LABELS.get(f, f.replace("_", " ").capitalize()) for f in top],
        })

    audit.record(
        session, "BATCH_PREDICT", "ML_MODEL", model.id,
        f"Batch prediction with model {model.model_name} on {len(predictions)} statements", user_id,
    )
    return {
        "model_id": model.id,
        "model_name": model.model_name,
        "statement_count": len(predictions),
        "high_risk_count": counts["HIGH"],
        "medium_risk_count": counts["MEDIUM"],
        "low_risk_count": counts["LOW"],
        "predictions": predictions,
    }
