"""Background scheduler: one event loop for all periodic HR jobs.

Schedule (local time, ``settings.timezone``):
  - Group sync:          daily at ``group_sync_hour``
  - Birthday preview:    last day of each month at ``birthday_report_hour``
  - Employee report:     1st of each month at ``employee_report_hour``
  - Payment notice:      ``payment_notice_day`` at ``payment_notice_hour``
"""

import asyncio
import calendar
import logging
import time
from datetime import datetime
from zoneinfo import ZoneInfo

from hrops.core.config import settings
from hrops.services.jobs import is_job_running, run_job

logger = logging.getLogger(__name__)

_scheduler_task: asyncio.Task | None = None
_last_heartbeat: float = 0.0

# ── Dedup keys ───────────────────────────────────────────────────────────────

_last_run: dict[str, str] = {}


def _should_run(task_name: str, run_key: str) -> bool:
    """Return True if this task+key hasn't run yet, and mark it as run."""
    if _last_run.get(task_name) == run_key:
        return False
    _last_run[task_name] = run_key
    return True


def _is_last_day_of_month(now: datetime) -> bool:
    return now.day == calendar.monthrange(now.year, now.month)[1]


async def _run(job: str, now: datetime) -> None:
    if is_job_running(job):
        logger.warning("Scheduled %s skipped: already in progress", job)
        return
    logger.info("Scheduled %s triggered", job)
    await run_job(job, now.date())


# ── Task: Group sync (daily) ────────────────────────────────────────────────

async def _run_group_sync(now: datetime) -> None:
    if now.hour != settings.group_sync_hour:
        return
    if not _should_run("group_sync", now.strftime("%Y-%m-%d")):
        return
    await _run("group_sync", now)


# ── Task: Birthday preview (month end) ──────────────────────────────────────

async def _run_birthday_report(now: datetime) -> None:
    if not _is_last_day_of_month(now) or now.hour != settings.birthday_report_hour:
        return
    if not _should_run("birthday_report", now.strftime("%Y-%m")):
        return
    await _run("birthday_report", now)


# ── Task: Employee movement report (1st of month) ───────────────────────────

async def _run_employee_report(now: datetime) -> None:
    if now.day != 1 or now.hour != settings.employee_report_hour:
        return
    if not _should_run("employee_report", now.strftime("%Y-%m")):
        return
    await _run("employee_report", now)


# ── Task: Payment notice (monthly) ──────────────────────────────────────────

async def _run_payment_notice(now: datetime) -> None:
    if now.day != settings.payment_notice_day or now.hour != settings.payment_notice_hour:
        return
    if not _should_run("payment_notice", now.strftime("%Y-%m")):
        return
    await _run("payment_notice", now)


# ── Main Loop ────────────────────────────────────────────────────────────────

ALL_TASKS = [
    ("group_sync", _run_group_sync),
    ("birthday_report", _run_birthday_report),
    ("employee_report", _run_employee_report),
    ("payment_notice", _run_payment_notice),
]


async def run_due_tasks(now: datetime) -> None:
    """Run every task due at ``now``; a failing task does not stop the others."""
    for task_name, task_fn in ALL_TASKS:
        try:
            await task_fn(now)
        except Exception:
            logger.exception("Scheduler task '%s' failed", task_name)


async def _scheduler_loop() -> None:
    """Single event loop, checks every 60s which tasks are due."""
    global _last_heartbeat
    tz = ZoneInfo(settings.timezone)
    while True:
        await asyncio.sleep(60)
        _last_heartbeat = time.monotonic()
        await run_due_tasks(datetime.now(tz))


def start_scheduler() -> None:
    global _scheduler_task
    if _scheduler_task is None or _scheduler_task.done():
        _scheduler_task = asyncio.create_task(_scheduler_loop())
        logger.info("Scheduler started: group sync, birthday report, employee report, payment notice")


def get_scheduler_health() -> dict:
    """Scheduler status from heartbeat recency (loop ticks every 60s, 10s grace)."""
    if _scheduler_task is None:
        return {"status": "not_started"}
    if _scheduler_task.done():
        return {"status": "stopped"}
    if _last_heartbeat == 0.0:
        return {"status": "starting"}
    elapsed = time.monotonic() - _last_heartbeat
    if elapsed > 70:
        return {"status": "stale", "last_heartbeat_secs_ago": round(elapsed)}
    return {"status": "healthy", "last_heartbeat_secs_ago": round(elapsed)}


def stop_scheduler() -> None:
    global _scheduler_task
    if _scheduler_task and not _scheduler_task.done():
        _scheduler_task.cancel()
        _scheduler_task = None
        logger.info("Scheduler stopped")
