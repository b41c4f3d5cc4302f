from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

import typer
from pydantic import BaseModel
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from fraudit import alerts, batch, features, pipeline, registry, stores
from fraudit.config import get_settings
from fraudit.db import get_session_factory, init_db, session_scope
from fraudit.errors import FrauditError
from fraudit.models import FraudRiskAssessment
from fraudit.schemas import AlertOut, AssessmentOut, BatchResultOut, FeatureBatchOut, ModelOut

app = typer.Typer(help="Fraud-risk analysis pipeline for financial statements")
console = Console()
log = logging.getLogger(__name__)


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    project_root: str | None = typer.Option(None, "--project-root", help="Directory holding fraudit.yaml and data/."),
    db_url: str | None = typer.Option(None, "--db-url", help="SQLAlchemy database URL override."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if project_root:
        os.environ["FRAUDIT_HOME"] = str(Path(project_root).expanduser().resolve())
    if db_url:
        os.environ["FRAUDIT_DATABASE_URL"] = db_url
    if project_root or db_url:
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)
    init_db()


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    if value is None:
        return "-"
    return str(value)


def _print(title: str, payload: BaseModel | dict[str, Any], ctx: typer.Context) -> None:
    data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    if _wants_json(ctx):
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = f"{len(value)} item(s)"
        table.add_row(key, _format_scalar(value))
    console.print(Panel(table, title=title, border_style="cyan"))


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=1)


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    _print("init-db", {"status": "ok", "database_url": get_settings().database_url}, ctx)


@app.command("analyze")
def analyze_command(
    ctx: typer.Context,
    statement_id: int = typer.Argument(..., help="Financial statement id"),
    user_id: str | None = typer.Option(None, "--user", help="Acting user id for the audit trail"),
) -> None:
    """Run the full analysis for one statement and show the assessment."""
    factory = get_session_factory()
    if not pipeline.analyze_statement(statement_id, user_id or get_settings().system_user_id, session_factory=factory):
        _fail(f"Analysis failed for statement {statement_id}; see the audit log for details.")
    with session_scope(factory) as session:
        assessment = stores.find_by_statement(session, FraudRiskAssessment, statement_id)
        out = AssessmentOut.model_validate(assessment)
    if _wants_json(ctx):
        _print("assessment", out, ctx)
        return
    _print(f"assessment · statement {statement_id}", out.model_dump(mode="json", exclude={"assessment_summary"}), ctx)
    console.print(Panel(out.assessment_summary, title="summary", border_style="green"))


@app.command("batch")
def batch_command(
    ctx: typer.Context,
    page_size: int | None = typer.Option(None, "--page-size", min=1),
) -> None:
    """Analyze every eligible statement."""
    with console.status("[bold cyan]Analyzing eligible statements[/bold cyan]", spinner="dots"):
        result = batch.process_all_statements(session_factory=get_session_factory(), page_size=page_size)
    _print("batch", BatchResultOut(**result), ctx)


@app.command("company-batch")
def company_batch_command(ctx: typer.Context, company_id: int = typer.Argument(...)) -> None:
    """Analyze one company's eligible statements."""
    try:
        result = batch.process_company_statements(company_id, session_factory=get_session_factory())
    except FrauditError as e:
        _fail(str(e))
    _print(f"company-batch · {company_id}", BatchResultOut(**result), ctx)


@app.command("features")
def features_command(
    ctx: typer.Context,
    statement_ids: list[int] = typer.Argument(..., help="Statement ids"),
    workers: int | None = typer.Option(None, "--workers", min=1),
    check: bool = typer.Option(False, "--check", help="Only report which statements have feature sets."),
) -> None:
    """Generate (or check) feature sets for the given statements."""
    factory = get_session_factory()
    if check:
        with session_scope(factory) as session:
            present = features.check_features_exist(session, statement_ids)
        _print("features · check", {str(k): v for k, v in present.items()}, ctx)
        return
    result = features.generate_features_for_statements(
        statement_ids, get_settings().system_user_id, session_factory=factory, max_workers=workers,
    )
    _print("features", FeatureBatchOut(**vars(result)), ctx)


@app.command("models")
def models_command(ctx: typer.Context) -> None:
    """List registered prediction models."""
    with session_scope() as session:
        rows = [ModelOut.model_validate(m).model_dump(mode="json") for m in registry.find_all(session)]
    if _wants_json(ctx):
        typer.echo(json.dumps(rows, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for column in ("id", "name", "version", "type", "active"):
        table.add_column(column)
    for row in rows:
        table.add_row(str(row["id"]), row["model_name"], row["model_version"], row["model_type"],
                      "[green]yes[/green]" if row["is_active"] else "no")
    console.print(Panel(table, title="models", border_style="cyan"))


@app.command("register-model")
def register_model_command(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    version: str = typer.Argument(...),
    model_type: str = typer.Option("RANDOM_FOREST", "--type"),
    accuracy: float | None = typer.Option(None, "--accuracy", help="Reported accuracy (0-1 or percent)"),
    activate: bool = typer.Option(False, "--activate"),
) -> None:
    metrics = {"accuracy": accuracy} if accuracy is not None else {}
    try:
        with session_scope() as session:
            model = registry.create_model(session, name, version, model_type, performance_metrics=metrics)
            if activate:
                registry.activate_model(session, model.id)
            out = ModelOut.model_validate(model)
    except (FrauditError, ValueError) as e:
        _fail(str(e))
    _print("register-model", out, ctx)


@app.command("activate-model")
def activate_model_command(ctx: typer.Context, model_id: int = typer.Argument(...)) -> None:
    try:
        with session_scope() as session:
            out = ModelOut.model_validate(registry.activate_model(session, model_id))
    except FrauditError as e:
        _fail(str(e))
    _print("activate-model", out, ctx)


@app.command("resolve-alert")
def resolve_alert_command(
    ctx: typer.Context,
    alert_id: int = typer.Argument(...),
    resolver: str = typer.Option(..., "--by", help="Resolver id"),
    notes: str = typer.Option("", "--notes"),
) -> None:
    try:
        with session_scope() as session:
            out = AlertOut.model_validate(alerts.resolve_alert(session, alert_id, resolver, notes))
    except FrauditError as e:
        _fail(str(e))
    _print("resolve-alert", out, ctx)


@app.command("schedule")
def schedule_command() -> None:
    """Run the startup analysis (if enabled) and keep the scheduler alive until interrupted."""
    settings = get_settings()
    factory = get_session_factory()
    batch.run_startup_analysis(settings, session_factory=factory)
    stop = threading.Event()
    thread = batch.start_scheduler(settings, session_factory=factory, stop_event=stop)
    if thread is None:
        _fail("Scheduler is disabled or misconfigured.")
    console.print(f"[green]Scheduler running[/green] ({settings.schedule_cron}); Ctrl+C to stop")
    try:
        while thread.is_alive():
            thread.join(timeout=1.0)
    except KeyboardInterrupt:
        stop.set()
        log.info("Scheduler stopped")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
