"""Feature vectors: one flat named map per statement, fed to the predictor.

The canonical key order is ``FEATURE_KEYS``. Numeric values are floats, or
``None`` when the upstream value is missing (stored as JSON ``null``), so the
predictor can tell an absent score from a real zero. Strength signals stay
booleans and default to ``False``. The map is stored as JSON text on
:class:`MlFeatures`.
"""
from __future__ import annotations

import json
import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from fraudit import audit, stores
from fraudit.config import get_settings
from fraudit.errors import MissingPrerequisiteError
from fraudit.models import (
    AltmanZScore, BeneishMScore, FinancialData, FinancialRatios, MlFeatures, PiotroskiFScore,
)
from fraudit.utils import to_float, to_json

log = logging.getLogger(__name__)

FeatureValue = float | bool | None
FeatureMap = dict[str, FeatureValue]

RATIO_KEYS = (
    "current_ratio", "quick_ratio", "cash_ratio", "gross_margin", "operating_margin",
    "net_profit_margin", "return_on_assets", "return_on_equity", "asset_turnover",
    "inventory_turnover", "accounts_receivable_turnover", "days_sales_outstanding",
    "debt_to_equity", "debt_ratio", "interest_coverage", "accrual_ratio", "earnings_quality",
    "price_to_earnings", "price_to_book",
)
GROWTH_KEYS = (
    "revenue_growth", "gross_profit_growth", "net_income_growth", "asset_growth",
    "receivables_growth", "inventory_growth", "liability_growth",
)
DISTRESS_KEYS = (
    "working_capital_to_total_assets", "retained_earnings_to_total_assets",
    "ebit_to_total_assets", "market_value_equity_to_book_value_debt",
    "sales_to_total_assets", "z_score",
)
MANIPULATION_KEYS = (
    "days_sales_receivables_index", "gross_margin_index", "asset_quality_index",
    "sales_growth_index", "depreciation_index", "sg_admin_expenses_index",
    "leverage_index", "total_accruals_to_total_assets", "m_score",
)
STRENGTH_FLAG_KEYS = (
    "positive_net_income", "positive_operating_cash_flow", "cash_flow_greater_than_net_income",
    "improving_roa", "decreasing_leverage", "improving_current_ratio", "no_new_shares",
    "improving_gross_margin", "improving_asset_turnover",
)
FEATURE_KEYS: tuple[str, ...] = (
    RATIO_KEYS + GROWTH_KEYS + DISTRESS_KEYS + MANIPULATION_KEYS + STRENGTH_FLAG_KEYS + ("f_score",)
)
BOOLEAN_KEYS = frozenset(STRENGTH_FLAG_KEYS)


@dataclass
class FeatureBatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: dict[int, str] = field(default_factory=dict)


def build_feature_map(
    data: FinancialData,
    ratios: FinancialRatios,
    distress: AltmanZScore,
    manipulation: BeneishMScore,
    strength: PiotroskiFScore,
) -> FeatureMap:
    """Flatten the upstream artifacts into the canonical ordered feature map."""
    features: FeatureMap = {}
    for source, keys in (
        (ratios, RATIO_KEYS),
        (data, GROWTH_KEYS),
        (distress, DISTRESS_KEYS),
        (manipulation, MANIPULATION_KEYS),
    ):
        for key in keys:
            features[key] = to_float(getattr(source, key))
    for key in STRENGTH_FLAG_KEYS:
        features[key] = bool(getattr(strength, key))
    features["f_score"] = to_float(strength.f_score)
    return features


def normalize_features(raw: Mapping[str, object]) -> FeatureMap:
    """Project an arbitrary mapping onto ``FEATURE_KEYS``.

    Absent strength signals become ``False``. Absent or unparsable numbers
    become ``None``; non-finite numbers are treated as unparsable.
    """
    features: FeatureMap = {}
    for key in FEATURE_KEYS:
        value = raw.get(key)
        if key in BOOLEAN_KEYS:
            features[key] = bool(value) if value is not None else False
        elif isinstance(value, bool):
            features[key] = 1.0 if value else 0.0
        elif value is None:
            features[key] = None
        else:
            try:
                number = float(value)
            except (TypeError, ValueError):
                number = None
            features[key] = number if number is not None and math.isfinite(number) else None
    return features


def serialize_features(features: Mapping[str, FeatureValue]) -> str:
    return to_json(dict(features))


def deserialize_features(text: str) -> FeatureMap:
    raw = json.loads(text)
    if not isinstance(raw, dict):
        raise ValueError("Feature set must be a JSON object")
    return normalize_features(raw)


def _require(session: Session, model, label: str, statement_id: int):
    row = stores.find_by_statement(session, model, statement_id)
    if row is None:
        raise MissingPrerequisiteError(label, statement_id)
    return row


def generate_features(session: Session, statement_id: int, user_id: str | None = None) -> MlFeatures:
    """Build and store the feature set, replacing any prior one. Caller must commit."""
    stores.get_statement(session, statement_id)
    data = stores.require_financial_data(session, statement_id)
    ratios = _require(session, FinancialRatios, "Financial ratios", statement_id)
    distress = _require(session, AltmanZScore, "Altman Z-Score", statement_id)
    manipulation = _require(session, BeneishMScore, "Beneish M-Score", statement_id)
    strength = _require(session, PiotroskiFScore, "Piotroski F-Score", statement_id)

    features = build_feature_map(data, ratios, distress, manipulation, strength)
    stores.delete_by_statement(session, MlFeatures, statement_id)
    row = MlFeatures(statement_id=statement_id, feature_set=serialize_features(features))
    session.add(row)
    session.flush()
    audit.record(
        session, "GENERATE_FEATURES", "ML_FEATURES", row.id,
        f"Generated ML features for statement id: {statement_id}", user_id,
    )
    return row


def load_features(session: Session, statement_id: int) -> FeatureMap:
    row = _require(session, MlFeatures, "ML features", statement_id)
    return deserialize_features(row.feature_set)


def check_features_exist(session: Session, statement_ids: Iterable[int]) -> dict[int, bool]:
    ids = list(statement_ids)
    if not ids:
        return {}
    present = set(session.execute(
        select(MlFeatures.statement_id).where(MlFeatures.statement_id.in_(ids))
    ).scalars())
    return {sid: sid in present for sid in ids}


def _generate_one(session_factory, statement_id: int, user_id: str | None) -> None:
    session = session_factory()
    try:
        generate_features(session, statement_id, user_id)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def generate_features_for_statements(
    statement_ids: Iterable[int],
    user_id: str | None = None,
    *,
    session_factory,
    max_workers: int | None = None,
) -> FeatureBatchResult:
    """Generate feature sets concurrently, one session per statement.

    A failing statement is recorded in ``errors`` and does not cancel the others.
    """
    ids = list(dict.fromkeys(statement_ids))
    result = FeatureBatchResult()
    if not ids:
        return result
    workers = max(1, min(max_workers or get_settings().feature_workers, len(ids)))

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="features")
    try:
        futures = {executor.submit(_generate_one, session_factory, sid, user_id): sid for sid in ids}
        for future in as_completed(futures):
            sid = futures[future]
            result.processed += 1
            try:
                future.result()
                result.succeeded += 1
            except Exception as e:
                result.failed += 1
                result.errors[sid] = f"{type(e).__name__}: {e}"
                log.warning("Feature generation failed for statement %s: %s", sid, e)
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    audit.record_isolated(
        session_factory, "BATCH_GENERATE_FEATURES", "ML_FEATURES", "batch",
        f"Generated features for {result.succeeded}/{result.processed} statements, {result.failed} failed",
        user_id,
    )
    log.info("Feature batch: %d processed, %d ok, %d failed", result.processed, result.succeeded, result.failed)
    return result
