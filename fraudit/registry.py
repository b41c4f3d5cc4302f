"""Model registry: versioned prediction models and their activation state.

At most one model per type is active. ``MlModel.active_slot`` carries the
model type while a model is active and is unique, so a second concurrent
activation of the same type fails on flush instead of leaving two active
rows behind.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fraudit import audit
from fraudit.errors import InvalidStateError, MissingPrerequisiteError, UnknownModelTypeError
from fraudit.models import MlModel, ModelType
from fraudit.utils import to_json

log = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("model_path", "feature_list", "performance_metrics", "trained_at")


def parse_model_type(value: str | ModelType) -> ModelType:
    try:
        return ModelType(str(value).strip().upper())
    except ValueError:
        raise UnknownModelTypeError(str(value)) from None


def _json_field(value: Any) -> str:
    return value if isinstance(value, str) else to_json(value or {})


def get_model(session: Session, model_id: int) -> MlModel:
    model = session.get(MlModel, model_id)
    if model is None:
        raise MissingPrerequisiteError("ML model", detail=f"id {model_id}")
    return model


def find_all(session: Session) -> list[MlModel]:
    return list(session.execute(select(MlModel).order_by(MlModel.trained_at.desc(), MlModel.id.desc())).scalars())


def find_active(session: Session, model_type: str | ModelType | None = None) -> list[MlModel]:
    stmt = select(MlModel).where(MlModel.is_active.is_(True))
    if model_type is not None:
        stmt = stmt.where(MlModel.model_type == parse_model_type(model_type).value)
    stmt = stmt.order_by(MlModel.trained_at.desc(), MlModel.id.desc())
    return list(session.execute(stmt).scalars())


def find_by_name(session: Session, model_name: str) -> list[MlModel]:
    stmt = select(MlModel).where(MlModel.model_name == model_name).order_by(MlModel.trained_at.desc())
    return list(session.execute(stmt).scalars())


def find_by_name_and_version(session: Session, model_name: str, model_version: str) -> MlModel | None:
    stmt = select(MlModel).where(MlModel.model_name == model_name, MlModel.model_version == model_version)
    return session.execute(stmt).scalar_one_or_none()


def find_latest_trained(session: Session) -> MlModel | None:
    stmt = select(MlModel).order_by(MlModel.trained_at.desc(), MlModel.id.desc()).limit(1)
    return session.execute(stmt).scalar_one_or_none()


def create_model(
    session: Session,
    model_name: str,
    model_version: str,
    model_type: str | ModelType,
    *,
    model_path: str = "",
    feature_list: dict[str, int] | str | None = None,
    performance_metrics: dict[str, Any] | str | None = None,
    user_id: str | None = None,
    **extra: Any,
) -> MlModel:
    """Register an inactive model. Caller must commit."""
    kind = parse_model_type(model_type)
    if find_by_name_and_version(session, model_name, model_version) is not None:
        raise InvalidStateError(f"Model {model_name} version {model_version} already exists")
    model = MlModel(
        model_name=model_name,
        model_version=model_version,
        model_type=kind.value,
        model_path=model_path,
        feature_list=_json_field(feature_list),
        performance_metrics=_json_field(performance_metrics),
        is_active=False,
        active_slot=None,
        **extra,
    )
    session.add(model)
    session.flush()
    audit.record(session, "CREATE", "ML_MODEL", model.id,
                 f"Registered ML model: {model_name} ({model_version}), type {kind.value}", user_id)
    return model


def update_model(session: Session, model_id: int, user_id: str | None = None, **changes: Any) -> MlModel:
    model = get_model(session, model_id)
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    for key, value in changes.items():
        if key in ("feature_list", "performance_metrics"):
            value = _json_field(value)
        setattr(model, key, value)
    session.flush()
    audit.record(session, "UPDATE", "ML_MODEL", model.id,
                 f"Updated ML model fields: {', '.join(sorted(changes))}", user_id)
    return model


def delete_model(session: Session, model_id: int, user_id: str | None = None) -> None:
    model = get_model(session, model_id)
    if model.is_active:
        raise InvalidStateError("Cannot delete an active model. Deactivate it first.")
    session.delete(model)
    session.flush()
    audit.record(session, "DELETE", "ML_MODEL", model_id,
                 f"Deleted ML model: {model.model_name} ({model.model_version})", user_id)


def activate_model(session: Session, model_id: int, user_id: str | None = None) -> MlModel:
    """Make *model_id* the single active model of its type. Caller must commit."""
    model = get_model(session, model_id)
    if model.is_active:
        return model
    try:
        session.execute(
            update(MlModel)
            .where(MlModel.model_type == model.model_type, MlModel.id != model.id)
            .values(is_active=False, active_slot=None)
            .execution_options(synchronize_session="fetch")
        )
        session.flush()
        model.is_active = True
        model.active_slot = model.model_type
        session.flush()
    except IntegrityError as e:
        raise InvalidStateError(f"Concurrent activation of a {model.model_type} model") from e
    audit.record(session, "ACTIVATE", "ML_MODEL", model.id,
                 f"Activated ML model: {model.model_name} ({model.model_version})", user_id)
    log.info("Activated model %s %s (%s)", model.model_name, model.model_version, model.model_type)
    return model


def deactivate_model(session: Session, model_id: int, user_id: str | None = None) -> MlModel:
    model = get_model(session, model_id)
    if not model.is_active:
        return model
    model.is_active = False
    model.active_slot = None
    session.flush()
    audit.record(session, "DEACTIVATE", "ML_MODEL", model.id,
                 f"Deactivated ML model: {model.model_name} ({model.model_version})", user_id)
    return model
