import logging
from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Any

from dateutil.relativedelta import relativedelta

from hrops.core.config import Settings, settings as default_settings
from hrops.core.exceptions import ErrorKind, ExpiredOrInvalidTokenError, HROpsError
from hrops.integrations.documents.client import DocumentStoreProtocol
from hrops.integrations.sheets.client import RosterSourceProtocol
from hrops.integrations.sheets.models import RosterTable
from hrops.models.dto.employee import BirthdayEntry, EmployeeRecord
from hrops.models.dto.reports import (
    BirthdayCommitResult,
    BirthdayEligibility,
    BirthdayPreviewResult,
    Exclusion,
    PendingApproval,
    StoredDocument,
)
from hrops.models.dto.settings import BirthdayConfig, EntityConfig
from hrops.notifications.email import MailSenderProtocol, render_email
from hrops.notifications.service import notify_operator
from hrops.services.approval import ApprovalWorkflow
from hrops.services.date_rules import (
    calculate_age,
    calculate_seniority_months,
    format_seniority_label,
    is_blank,
    parse_date,
)

logger = logging.getLogger(__name__)

BIRTHDAY_TEMPLATE = "birthday_list.html"
APPROVAL_SUBJECT = "【審核】每月壽星生日禮金名單"
FAILURE_SUBJECT = "【錯誤】每月壽星報告產生失敗"

# Logical column key -> EmployeeRecord field
_RECORD_FIELDS = {
    "company": "company",
    "department_code": "department_code",
    "department_name": "department_name",
    "employee_id": "employee_id",
    "employee_name": "name",
    "date_of_birth": "date_of_birth",
    "hire_date": "hire_date",
    "resignation_date": "resignation_date",
    "insurance_unit": "insurance_unit",
}
_RAW_FIELDS = {"date_of_birth", "hire_date", "resignation_date"}


def target_birth_month(today: date) -> int:
    """Calendar month following ``today``'s month (December -> 1)."""
    return (today + relativedelta(months=1)).month


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def records_from_table(table: RosterTable, column_names: dict[str, str]) -> list[EmployeeRecord]:
    """Project roster rows onto EmployeeRecord using the configured header names.

    Every configured column must exist; the error lists all missing ones.
    """
    indices = table.column_indices(column_names)
    records = []
    for row in table.rows:
        values = {}
        for key, index in indices.items():
            field = _RECORD_FIELDS.get(key)
            if field is None:
                continue
            cell = RosterTable.cell(row, index)
            values[field] = cell if field in _RAW_FIELDS else _text(cell)
        records.append(EmployeeRecord(**values))
    return records


def evaluate_employee(record: EmployeeRecord, today: date, config: BirthdayConfig) -> ErrorKind | None:
    """First disqualifying reason for ``record``, or None when eligible.

    Predicates run in a fixed order; a resigned employee is reported as such
    whatever else is wrong with the row.
    """
    if is_blank(record.company) or is_blank(record.date_of_birth) or is_blank(record.hire_date):
        return ErrorKind.INCOMPLETE_DATA
    if not is_blank(record.resignation_date):
        return ErrorKind.ALREADY_RESIGNED
    if "_" in record.employee_id:
        return ErrorKind.INELIGIBLE_ID_PATTERN
    excluded = set(config.excluded_entities)
    if record.insurance_unit in excluded or record.company in excluded:
        return ErrorKind.EXCLUDED_ENTITY
    try:
        birth_date = parse_date(record.date_of_birth)
    except HROpsError:
        return ErrorKind.INVALID_BIRTH_DATE
    if birth_date.month != target_birth_month(today):
        return ErrorKind.WRONG_BIRTH_MONTH
    try:
        hire_date = parse_date(record.hire_date)
    except HROpsError:
        return ErrorKind.INVALID_HIRE_DATE
    if calculate_seniority_months(hire_date, today) < config.min_seniority_months:
        return ErrorKind.INSUFFICIENT_SENIORITY
    return None


def _project(record: EmployeeRecord, today: date) -> BirthdayEntry:
    birth_date = parse_date(record.date_of_birth)
    hire_date = parse_date(record.hire_date)
    months = calculate_seniority_months(hire_date, today)
    return BirthdayEntry(
        department_code=record.department_code,
        department_name=record.department_name,
        employee_id=record.employee_id,
        employee_name=record.name,
        date_of_birth=birth_date,
        hire_date=hire_date,
        age=calculate_age(birth_date, today),
        seniority_months=months,
        seniority_label=format_seniority_label(months),
    )


def filter_eligible_birthdays(
    records: Iterable[EmployeeRecord], today: date, config: BirthdayConfig,
) -> BirthdayEligibility:
    """Split next month's eligible birthdays into the two entity lists, in roster order."""
    result = BirthdayEligibility(target_month=target_birth_month(today))
    for record in records:
        reason = evaluate_employee(record, today, config)
        if reason is not None:
            logger.debug("Excluded %s from birthday list: %s", record.employee_id, reason.value)
            result.exclusions.append(
                Exclusion(employee_id=record.employee_id, employee_name=record.name, reason=reason)
            )
            continue

        entry = _project(record, today)
        if config.entity_a.match in record.company:
            result.entity_a.append(entry)
        elif config.entity_b.match in record.company:
            result.entity_b.append(entry)
        else:
            logger.warning(
                "Eligible employee %s has unrecognised entity %r, left out of both lists",
                record.employee_id, record.company,
            )
            result.unclassified.append(entry)
    return result


def birthday_document_name(entity: EntityConfig, report_month: date) -> str:
    return f"{entity.short_name}{report_month:%y%m}壽星"


class BirthdayReportService:
    """Preview, approval and archiving of the monthly birthday gift lists."""

    def __init__(
        self,
        roster: RosterSourceProtocol,
        documents: DocumentStoreProtocol,
        mailer: MailSenderProtocol,
        workflow: ApprovalWorkflow,
        config: BirthdayConfig,
        operator_email: str = "",
        app_settings: Settings | None = None,
    ):
        self.roster = roster
        self.documents = documents
        self.mailer = mailer
        self.workflow = workflow
        self.config = config
        self.operator_email = operator_email
        self.settings = app_settings or default_settings

    async def _eligibility(self, today: date) -> BirthdayEligibility:
        table = await self.roster.get_table(self.config.sheet_name)
        records = records_from_table(table, self.config.column_names)
        return filter_eligible_birthdays(records, today, self.config)

    async def _render_lists(
        self, eligibility: BirthdayEligibility, today: date, *, archive: bool,
    ) -> list[StoredDocument]:
        report_month = today + relativedelta(months=1)
        documents = []
        for entity, employees in (
            (self.config.entity_a, eligibility.entity_a),
            (self.config.entity_b, eligibility.entity_b),
        ):
            if not employees:
                continue
            folder_id = entity.archive_folder_id if archive else self.config.drafts_folder_id
            doc = await self.documents.create_document(
                BIRTHDAY_TEMPLATE,
                birthday_document_name(entity, report_month),
                folder_id,
                {
                    "company_full_name": entity.full_name,
                    "print_date": f"{today:%Y/%m/%d}",
                    "report_year": report_month.year,
                    "report_month": report_month.month,
                    "employees": employees,
                },
            )
            documents.append(doc)
        return documents

    def _review_links(self, token: str) -> tuple[str, str]:
        base = self.settings.review_url
        return f"{base}?action=approve&token={token}", f"{base}?action=reject&token={token}"

    async def preview(self, today: date) -> BirthdayPreviewResult:
        """Build draft lists for next month and ask the reviewer to approve them."""
        target_month = target_birth_month(today)
        try:
            eligibility = await self._eligibility(today)
            if eligibility.is_empty:
                logger.info("No eligible employees with birthdays in month %d", target_month)
                return BirthdayPreviewResult(status="no_eligible_employees", target_month=target_month)

            documents = await self._render_lists(eligibility, today, archive=False)
            pending = PendingApproval(
                target_month=target_month,
                requested_at=datetime.now(timezone.utc),
                preview={"as_of": today.isoformat(), "documents": [d.id for d in documents]},
            )
            token = self.workflow.request(pending.model_dump(mode="json"))

            approve_url, reject_url = self._review_links(token)
            report_month = today + relativedelta(months=1)
            counts = [len(eligibility.entity_a), len(eligibility.entity_b)]
            labels = [self.config.entity_a.short_name, self.config.entity_b.short_name]
            non_empty = [(label, count) for label, count in zip(labels, counts) if count]
            html = render_email("birthday_approval.html", {
                "report_year": report_month.year,
                "report_month": report_month.month,
                "documents": [
                    {"label": label, "count": count, "name": doc.name, "url": doc.url}
                    for (label, count), doc in zip(non_empty, documents)
                ],
                "approve_url": approve_url,
                "reject_url": reject_url,
                "expires_minutes": int(self.workflow.ttl_seconds // 60),
            })
            await self.mailer.send(self.config.reviewer_email, APPROVAL_SUBJECT, html)
        except HROpsError as e:
            logger.exception("Birthday report preview failed")
            await notify_operator(
                self.mailer, self.operator_email,
                subject=FAILURE_SUBJECT, detail=e.message, context={"job": "birthday_report"},
            )
            raise

        logger.info(
            "Birthday report preview sent for month %d (%d + %d employees)",
            target_month, len(eligibility.entity_a), len(eligibility.entity_b),
        )
        return BirthdayPreviewResult(
            status="pending_approval",
            target_month=target_month,
            token=token,
            documents=documents,
            eligible_count=len(eligibility.entity_a) + len(eligibility.entity_b),
        )

    async def commit(self, token: str, today: date | None = None) -> BirthdayCommitResult:
        """Consume the token and archive lists rebuilt from the current roster.

        Eligibility is evaluated as of the preview date so that a late approval
        still targets the same month.
        """
        payload = self.workflow.approve(token)
        try:
            pending = PendingApproval.model_validate(payload)
            as_of_raw = pending.preview.get("as_of")
            as_of = date.fromisoformat(as_of_raw) if as_of_raw else (today or date.today())
        except ValueError as e:
            raise ExpiredOrInvalidTokenError() from e

        try:
            eligibility = await self._eligibility(as_of)
            documents = await self._render_lists(eligibility, as_of, archive=True)
        except HROpsError as e:
            logger.exception("Birthday report commit failed")
            await notify_operator(
                self.mailer, self.operator_email,
                subject=FAILURE_SUBJECT, detail=e.message, context={"job": "birthday_report"},
            )
            raise

        logger.info("Birthday lists for month %d archived (%d documents)", pending.target_month, len(documents))
        return BirthdayCommitResult(
            target_month=pending.target_month,
            documents=documents,
            eligible_count=len(eligibility.entity_a) + len(eligibility.entity_b),
        )

    def reject(self, token: str) -> None:
        payload = self.workflow.reject(token)
        logger.info("Birthday report for month %s rejected by reviewer", payload.get("target_month"))
