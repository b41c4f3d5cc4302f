"""Batch analysis over eligible statements, plus startup and scheduled triggers.

Each statement is analyzed in its own session and committed on its own, so
one failure never rolls back its siblings. Failures are counted, logged and
written to the audit trail in a separate session.
"""
from __future__ import annotations

import datetime as dt
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from croniter import CroniterBadCronError, croniter

from fraudit import audit, stores
from fraudit.config import Settings, get_settings
from fraudit.pipeline import run_analysis

log = logging.getLogger(__name__)

_background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-analysis")


def _analyze_isolated(session_factory, statement_id: int, user_id: str | None) -> None:
    session = session_factory()
    try:
        run_analysis(session, statement_id, user_id)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _run_items(
    session_factory, statement_ids: list[int], user_id: str | None, error_action: str, counts: dict[str, int],
) -> None:
    for statement_id in statement_ids:
        try:
            _analyze_isolated(session_factory, statement_id, user_id)
            counts["processed"] += 1
        except Exception as e:
            counts["errors"] += 1
            log.exception("Batch analysis failed for statement %s", statement_id)
            audit.record_isolated(
                session_factory, error_action, "FINANCIAL_STATEMENT", statement_id,
                f"Error analyzing statement id: {statement_id}. Error: {e}", user_id,
            )


def process_all_statements(
    *, session_factory, page_size: int | None = None, user_id: str | None = None,
) -> dict[str, int]:
    """Analyze every PROCESSED statement, one page of ids at a time.

    Paging is keyed on id, so statements that move to ANALYZED mid-run do not
    shift later pages.
    """
    settings = get_settings()
    page_size = page_size or settings.batch_page_size
    user_id = user_id or settings.system_user_id
    counts = {"processed": 0, "errors": 0}
    last_id = 0
    has_more = True
    while has_more:
        session = session_factory()
        try:
            page = stores.eligible_statement_ids(session, after_id=last_id, limit=page_size)
        finally:
            session.close()
        if not page:
            break
        _run_items(session_factory, page, user_id, "BATCH_ANALYZE_ERROR", counts)
        last_id = page[-1]
        has_more = len(page) == page_size
    log.info("Batch analysis finished: %(processed)d processed, %(errors)d errors", counts)
    return counts


def process_all_statements_async(
    *, session_factory, page_size: int | None = None, user_id: str | None = None,
) -> Future:
    """Run :func:`process_all_statements` on the background executor."""
    return _background.submit(
        process_all_statements, session_factory=session_factory, page_size=page_size, user_id=user_id,
    )


def process_company_statements(
    company_id: int, *, session_factory, user_id: str | None = None,
) -> dict[str, int]:
    """Analyze one company's PROCESSED statements in a single pass."""
    user_id = user_id or get_settings().system_user_id
    session = session_factory()
    try:
        stores.get_company(session, company_id)
        ids = stores.eligible_statement_ids(session, company_id=company_id)
    finally:
        session.close()
    counts = {"processed": 0, "errors": 0}
    _run_items(session_factory, ids, user_id, "COMPANY_BATCH_ANALYZE_ERROR", counts)
    log.info("Company %s batch finished: %d processed, %d errors",
             company_id, counts["processed"], counts["errors"])
    return counts


# ---------------------------------------------------------------------------
# Startup and scheduled runs
# ---------------------------------------------------------------------------


def run_startup_analysis(settings: Settings | None = None, *, session_factory) -> dict[str, int] | None:
    settings = settings or get_settings()
    if not settings.auto_analyze_existing:
        log.info("Startup analysis disabled")
        return None
    try:
        return process_all_statements(session_factory=session_factory, page_size=settings.batch_page_size)
    except Exception:
        log.exception("Startup analysis failed")
        return None


def next_run_time(cron_expr: str, now: dt.datetime) -> dt.datetime:
    return croniter(cron_expr, now).get_next(dt.datetime)


def _scheduler_loop(settings: Settings, session_factory, stop: threading.Event) -> None:
    while not stop.is_set():
        now = dt.datetime.now()
        due = next_run_time(settings.schedule_cron, now)
        if stop.wait(max(0.0, (due - now).total_seconds())):
            return
        log.info("Running scheduled analysis")
        try:
            process_all_statements(session_factory=session_factory, page_size=settings.batch_page_size)
        except Exception:
            log.exception("Scheduled analysis failed")


def start_scheduler(
    settings: Settings | None = None, *, session_factory, stop_event: threading.Event | None = None,
) -> threading.Thread | None:
    """Start the daily re-analysis in a daemon thread. Returns None if disabled or misconfigured."""
    settings = settings or get_settings()
    if not settings.scheduler_enabled:
        log.info("Scheduler disabled via settings")
        return None
    try:
        croniter(settings.schedule_cron)
    except (CroniterBadCronError, ValueError):
        log.error("Invalid cron expression: %s", settings.schedule_cron)
        return None
    thread = threading.Thread(
        target=_scheduler_loop,
        args=(settings, session_factory, stop_event or threading.Event()),
        name="fraudit-scheduler",
        daemon=True,
    )
    thread.start()
    log.info("Scheduler started (%s)", settings.schedule_cron)
    return thread
