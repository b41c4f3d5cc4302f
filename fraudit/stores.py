"""Lookups over statements, financial data and the per-statement analysis tables."""
from __future__ import annotations

from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from fraudit.errors import MissingPrerequisiteError
from fraudit.models import (
    Base, Company, FinancialData, FinancialStatement, FiscalYear, MlModel, MlPrediction,
    StatementStatus,
)

T = TypeVar("T", bound=Base)


# ---------------------------------------------------------------------------
# Statement provider
# ---------------------------------------------------------------------------


def get_statement(session: Session, statement_id: int) -> FinancialStatement:
    stmt = (
        select(FinancialStatement)
        .options(joinedload(FinancialStatement.fiscal_year).joinedload(FiscalYear.company))
        .where(FinancialStatement.id == statement_id)
    )
    statement = session.execute(stmt).unique().scalar_one_or_none()
    if statement is None:
        raise MissingPrerequisiteError("Financial statement", statement_id)
    return statement


def find_financial_data(session: Session, statement_id: int) -> FinancialData | None:
    """Data row for an existing statement, or ``None`` if it has none yet."""
    return find_by_statement(session, FinancialData, statement_id)


def require_financial_data(session: Session, statement_id: int) -> FinancialData:
    data = find_financial_data(session, statement_id)
    if data is None:
        raise MissingPrerequisiteError("Financial data", statement_id)
    return data


def find_prior_financial_data(session: Session, statement: FinancialStatement) -> FinancialData | None:
    """Financial data of the same company's previous fiscal year, if one was filed."""
    fiscal_year = statement.fiscal_year
    stmt = (
        select(FinancialData)
        .join(FinancialStatement, FinancialData.statement_id == FinancialStatement.id)
        .join(FiscalYear, FinancialStatement.fiscal_year_id == FiscalYear.id)
        .where(
            FiscalYear.company_id == fiscal_year.company_id,
            FiscalYear.year == fiscal_year.year - 1,
            FinancialStatement.statement_type == statement.statement_type,
        )
        .order_by(FinancialStatement.uploaded_at.desc(), FinancialStatement.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Per-statement analysis stores
# ---------------------------------------------------------------------------


def find_by_statement(session: Session, model: type[T], statement_id: int) -> T | None:
    stmt = select(model).where(model.statement_id == statement_id).order_by(model.id.desc()).limit(1)
    return session.execute(stmt).scalar_one_or_none()


def find_latest_by_company(session: Session, model: type[T], company_id: int) -> T | None:
    """Most recent artifact of *model* across all of a company's statements."""
    stmt = (
        select(model)
        .join(FinancialStatement, model.statement_id == FinancialStatement.id)
        .join(FiscalYear, FinancialStatement.fiscal_year_id == FiscalYear.id)
        .where(FiscalYear.company_id == company_id)
        .order_by(FiscalYear.year.desc(), model.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def delete_by_statement(session: Session, model: type[T], statement_id: int) -> int:
    """Delete every *model* row for the statement. Caller must commit."""
    rows = session.execute(select(model).where(model.statement_id == statement_id)).scalars().all()
    for row in rows:
        session.delete(row)
    session.flush()
    return len(rows)


def find_latest_active_prediction(session: Session, statement_id: int) -> MlPrediction | None:
    """Latest prediction for the statement produced by a currently active model."""
    stmt = (
        select(MlPrediction)
        .join(MlModel, MlPrediction.model_id == MlModel.id)
        .where(MlPrediction.statement_id == statement_id, MlModel.is_active.is_(True))
        .order_by(MlPrediction.predicted_at.desc(), MlPrediction.id.desc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def eligible_statement_ids(
    session: Session, *, after_id: int = 0, limit: int | None = None, company_id: int | None = None,
) -> list[int]:
    """Ids of PROCESSED statements in id order, starting after *after_id*."""
    stmt = select(FinancialStatement.id).where(
        FinancialStatement.status == StatementStatus.PROCESSED.value,
        FinancialStatement.id > after_id,
    )
    if company_id is not None:
        stmt = stmt.join(FiscalYear, FinancialStatement.fiscal_year_id == FiscalYear.id).where(
            FiscalYear.company_id == company_id
        )
    stmt = stmt.order_by(FinancialStatement.id)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.execute(stmt).scalars())


def get_company(session: Session, company_id: int) -> Company:
    company = session.get(Company, company_id)
    if company is None:
        raise MissingPrerequisiteError("Company", detail=f"id {company_id}")
    return company
