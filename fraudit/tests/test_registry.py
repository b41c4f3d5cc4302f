from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from fraudit import registry
from fraudit.errors import InvalidStateError, MissingPrerequisiteError, UnknownModelTypeError
from fraudit.models import AuditLog, ModelType


class TestModelType:
    def test_parse_is_case_insensitive(self):
        assert registry.parse_model_type(" random_forest ") == ModelType.RANDOM_FOREST

    def test_unknown_type(self):
        with pytest.raises(UnknownModelTypeError) as exc:
            registry.parse_model_type("GRADIENT_BOOSTING")
        assert isinstance(exc.value, ValueError)
        assert exc.value.model_type == "GRADIENT_BOOSTING"


# =========================================================================
# Create / update / delete
# =========================================================================

class TestModelLifecycle:
    def test_create_is_inactive_and_audited(self, session):
        model = registry.create_model(
            session, "baseline", "1.0", "NEURAL_NETWORK",
            feature_list={"z_score": 0}, performance_metrics={"accuracy": 0.9}, user_id="ops",
        )
        assert model.is_active is False
        assert model.active_slot is None
        assert json.loads(model.performance_metrics) == {"accuracy": 0.9}
        event = session.scalars(select(AuditLog).where(AuditLog.action == "CREATE")).one()
        assert event.entity_id == str(model.id)
        assert event.user_id == "ops"

    def test_duplicate_name_and_version(self, session):
        registry.create_model(session, "baseline", "1.0", "RANDOM_FOREST")
        with pytest.raises(InvalidStateError):
            registry.create_model(session, "baseline", "1.0", "LOGISTIC_REGRESSION")
        registry.create_model(session, "baseline", "1.1", "RANDOM_FOREST")
        assert len(registry.find_by_name(session, "baseline")) == 2

    def test_create_rejects_unknown_type(self, session):
        with pytest.raises(UnknownModelTypeError):
            registry.create_model(session, "odd", "1.0", "XGBOOST")
        assert registry.find_all(session) == []

    def test_update_allowed_fields(self, session):
        model = registry.create_model(session, "baseline", "1.0", "RANDOM_FOREST")
        registry.update_model(session, model.id, performance_metrics={"accuracy": 0.7}, model_path="/m/rf")
        assert json.loads(model.performance_metrics) == {"accuracy": 0.7}
        assert model.model_path == "/m/rf"

    def test_update_rejects_activation_fields(self, session):
        model = registry.create_model(session, "baseline", "1.0", "RANDOM_FOREST")
        with pytest.raises(ValueError):
            registry.update_model(session, model.id, is_active=True)

    def test_delete_active_rejected(self, session, active_model):
        model = active_model(session)
        with pytest.raises(InvalidStateError):
            registry.delete_model(session, model.id)
        registry.deactivate_model(session, model.id)
        registry.delete_model(session, model.id)
        assert registry.find_by_name_and_version(session, "baseline", "1.0") is None

    def test_missing_model(self, session):
        with pytest.raises(MissingPrerequisiteError):
            registry.get_model(session, 999)


# =========================================================================
# Activation
# =========================================================================

class TestActivation:
    def test_activation_deactivates_same_type_only(self, session):
        first = registry.create_model(session, "rf", "1", "RANDOM_FOREST")
        second = registry.create_model(session, "rf", "2", "RANDOM_FOREST")
        logistic = registry.create_model(session, "lr", "1", "LOGISTIC_REGRESSION")
        registry.activate_model(session, first.id)
        registry.activate_model(session, logistic.id)
        registry.activate_model(session, second.id)
        session.commit()

        session.refresh(first)
        assert first.is_active is False
        assert first.active_slot is None
        assert second.is_active is True
        assert second.active_slot == "RANDOM_FOREST"
        assert logistic.is_active is True
        assert [m.id for m in registry.find_active(session, "RANDOM_FOREST")] == [second.id]
        assert {m.id for m in registry.find_active(session)} == {second.id, logistic.id}

    def test_reactivation_is_noop(self, session, active_model):
        model = active_model(session)
        registry.activate_model(session, model.id)
        events = session.scalars(select(AuditLog).where(AuditLog.action == "ACTIVATE")).all()
        assert len(events) == 1

    def test_deactivate_clears_slot(self, session, active_model):
        model = active_model(session)
        registry.deactivate_model(session, model.id)
        assert model.is_active is False
        assert model.active_slot is None
        assert registry.find_active(session) == []

    def test_latest_trained(self, session):
        registry.create_model(session, "rf", "1", "RANDOM_FOREST")
        newest = registry.create_model(session, "rf", "2", "RANDOM_FOREST")
        assert registry.find_latest_trained(session).id == newest.id
