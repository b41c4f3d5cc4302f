"""Shared fixtures: isolated settings, SQLite databases and statement builders."""
from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from fraudit.config import get_settings
from fraudit.db import make_engine, make_session_factory
from fraudit.models import (
    Base, Company, FinancialStatement, FiscalYear, StatementStatus,
)
from fraudit.registry import activate_model, create_model
from fraudit.tests.factories import financial_data


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("FRAUDIT_HOME", str(tmp_path))
    monkeypatch.setenv("FRAUDIT_DATABASE_URL", "sqlite://")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture()
def engine():
    eng = make_engine("sqlite://")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    sess = make_session_factory(engine)()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def session_factory(tmp_path):
    """File-backed factory for code that opens its own sessions (threads, batches)."""
    eng = make_engine(f"sqlite:///{tmp_path / 'fraudit-test.db'}")
    Base.metadata.create_all(eng)
    yield make_session_factory(eng)
    eng.dispose()


@pytest.fixture()
def make_statement():
    def _make(
        session: Session,
        values: dict[str, str] | None = None,
        *,
        company: str = "Acme Corp",
        year: int = 2023,
        status: str = StatementStatus.PROCESSED.value,
        user_id: str = "uploader-1",
    ) -> FinancialStatement:
        comp = session.query(Company).filter_by(name=company).one_or_none()
        if comp is None:
            comp = Company(name=company, stock_code=company[:4].upper(), sector="Industrial")
            session.add(comp)
            session.flush()
        fiscal_year = session.query(FiscalYear).filter_by(company_id=comp.id, year=year).one_or_none()
        if fiscal_year is None:
            fiscal_year = FiscalYear(company_id=comp.id, year=year, is_audited=True)
            session.add(fiscal_year)
            session.flush()
        statement = FinancialStatement(
            fiscal_year_id=fiscal_year.id, user_id=user_id, statement_type="ANNUAL",
            period=str(year), status=status,
        )
        session.add(statement)
        session.flush()
        if values is not None:
            data = financial_data(values)
            data.statement_id = statement.id
            session.add(data)
            session.flush()
        return statement

    return _make


@pytest.fixture()
def active_model():
    def _register(session: Session, model_type: str = "RANDOM_FOREST", **kwargs):
        model = create_model(session, kwargs.pop("name", "baseline"), kwargs.pop("version", "1.0"),
                             model_type, **kwargs)
        activate_model(session, model.id)
        session.flush()
        return model

    return _register
