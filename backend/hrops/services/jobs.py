"""Job entry points shared by the scheduler and the admin API.

Each job builds its service from the process-wide collaborators, runs under
its own lock so a scheduled run and a manual trigger never overlap, and
reports structural failures to the operator channel before re-raising.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from hrops.core.config import settings
from hrops.core.exceptions import HROpsError
from hrops.core.logging import job_context
from hrops.integrations.directory.client import DirectoryClientProtocol, GoogleDirectoryClient
from hrops.integrations.documents.client import DocumentStoreProtocol, LocalDocumentStore
from hrops.integrations.sheets.client import GoogleSheetsRosterClient, RosterSourceProtocol, RosterWriterProtocol
from hrops.integrations.sheets.ledger import SerialLedgerProtocol, SheetsSerialLedger
from hrops.models.dto.settings import HRConfig
from hrops.notifications.email import MailSenderProtocol, SmtpMailSender
from hrops.notifications.service import notify_operator
from hrops.services.approval import ApprovalWorkflow, InMemoryTokenStore
from hrops.services.birthday_service import BirthdayReportService
from hrops.services.employee_report import send_employee_movement_report
from hrops.services.group_sync import sync_department_groups
from hrops.services.offer_service import OfferLetterService
from hrops.services.payment_notice import send_payment_notice
from hrops.services.probation_service import ProbationReviewService
from hrops.services.settings_service import get_hr_config

logger = logging.getLogger(__name__)

JOB_NAMES = ("group_sync", "birthday_report", "employee_report", "payment_notice", "probation_review")

_FAILURE_SUBJECTS = {
    "group_sync": "【錯誤】部門群組同步失敗",
    "employee_report": "【錯誤】每月員工異動報告寄送失敗",
    "payment_notice": "【錯誤】每月款項申請通知寄送失敗",
    "probation_review": "【錯誤】試用期考核表產生失敗",
}

_job_locks: dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in JOB_NAMES}


@dataclass
class Collaborators:
    roster: RosterSourceProtocol
    roster_writer: RosterWriterProtocol
    ledger: SerialLedgerProtocol
    directory: DirectoryClientProtocol
    documents: DocumentStoreProtocol
    mailer: MailSenderProtocol
    workflow: ApprovalWorkflow


_collaborators: Collaborators | None = None


def build_default_collaborators() -> Collaborators:
    roster = GoogleSheetsRosterClient()
    return Collaborators(
        roster=roster,
        roster_writer=roster,
        ledger=SheetsSerialLedger(roster, settings.employee_id_ledger_sheet),
        directory=GoogleDirectoryClient(),
        documents=LocalDocumentStore(),
        mailer=SmtpMailSender(),
        workflow=ApprovalWorkflow(InMemoryTokenStore()),
    )


def get_collaborators() -> Collaborators:
    global _collaborators
    if _collaborators is None:
        _collaborators = build_default_collaborators()
    return _collaborators


def set_collaborators(collaborators: Collaborators | None) -> None:
    global _collaborators
    _collaborators = collaborators


def local_today() -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


def is_job_running(job: str) -> bool:
    return _job_locks[job].locked()


def birthday_service(
    collaborators: Collaborators | None = None, config: HRConfig | None = None,
) -> BirthdayReportService:
    c = collaborators or get_collaborators()
    cfg = config or get_hr_config()
    return BirthdayReportService(
        c.roster, c.documents, c.mailer, c.workflow, cfg.birthday, operator_email=cfg.operator_email,
    )


def offer_service(
    collaborators: Collaborators | None = None, config: HRConfig | None = None,
) -> OfferLetterService:
    c = collaborators or get_collaborators()
    cfg = config or get_hr_config()
    return OfferLetterService(
        c.roster, c.roster_writer, c.ledger, c.documents, c.mailer, cfg.offer,
        operator_email=cfg.operator_email,
    )


async def _report_failure(c: Collaborators, cfg: HRConfig, job: str, error: HROpsError) -> None:
    await notify_operator(
        c.mailer, cfg.operator_email,
        subject=_FAILURE_SUBJECTS[job], detail=error.message, context={"job": job},
    )


async def run_job(
    job: str,
    today: date,
    *,
    collaborators: Collaborators | None = None,
    config: HRConfig | None = None,
    **options: Any,
) -> Any:
    """Run ``job`` to completion and return its result.

    Raises KeyError for an unknown job name.
    """
    lock = _job_locks[job]
    c = collaborators or get_collaborators()
    cfg = config or get_hr_config()

    async with lock:
        with job_context(job):
            logger.info("Job %s started for %s", job, today.isoformat())
            return await _dispatch(job, today, c, cfg, options)


async def _dispatch(job: str, today: date, c: Collaborators, cfg: HRConfig, options: dict[str, Any]) -> Any:
    if job == "birthday_report":
        # The birthday service reports its own failures.
        return await birthday_service(c, cfg).preview(today)
    try:
        if job == "group_sync":
            return await sync_department_groups(c.roster, c.directory, cfg.group_sync, today)
        if job == "employee_report":
            return await send_employee_movement_report(c.roster, c.mailer, cfg.employee_report, today)
        if job == "payment_notice":
            return await send_payment_notice(c.mailer, cfg.payment_notice, today)
        service = ProbationReviewService(c.roster, c.documents, c.mailer, cfg.probation)
        return await service.process_pending(today, send_to=options.get("send_to", "employee"))
    except HROpsError as e:
        logger.exception("Job %s failed", job)
        await _report_failure(c, cfg, job, e)
        raise
