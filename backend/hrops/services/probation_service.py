import logging
import re
from datetime import date, datetime, timezone
from typing import Any

from hrops.core.config import Settings, settings as default_settings
from hrops.core.exceptions import ErrorKind, HROpsError
from hrops.integrations.documents.client import DocumentStoreProtocol, wait_until_ready
from hrops.integrations.sheets.client import RosterSourceProtocol
from hrops.integrations.sheets.models import RosterTable
from hrops.models.dto.employee import ProbationRecord
from hrops.models.dto.reports import BatchReport, ItemResult, ProbationNotice
from hrops.models.dto.settings import ProbationConfig
from hrops.notifications.email import MailSenderProtocol, mask_email, render_email
from hrops.services.date_rules import compute_due_date, format_date_simple, is_blank

logger = logging.getLogger(__name__)

STATUS_COLUMN = "通知信狀態"
MANAGER_EMAIL_COLUMN = "主管Email"
EMPLOYEE_EMAIL_COLUMN = "員工Email"
REQUIRED_COLUMNS = (STATUS_COLUMN, MANAGER_EMAIL_COLUMN, EMPLOYEE_EMAIL_COLUMN)

# ProbationRecord field -> sheet header
_FIELD_HEADERS = {
    "employee_name": "員工姓名",
    "employee_id": "員工代號",
    "department": "部門",
    "manager_name": "直屬主管",
    "manager_email": MANAGER_EMAIL_COLUMN,
    "employee_email": EMPLOYEE_EMAIL_COLUMN,
    "probation_start_date": "試用起始日",
    "probation_end_date": "試用截止日",
    "sick_leave_hours": "病假時數",
    "personal_leave_hours": "事假時數",
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_DUE_DATE_FALLBACK = {
    ErrorKind.MISSING_INPUT: "請確認試用截止日",
    ErrorKind.INVALID_DATE: "計算截止日時發生錯誤",
}


class InvalidRecipientError(HROpsError):
    kind = ErrorKind.INCOMPLETE_DATA


def validate_email(value: str) -> bool:
    return bool(value) and bool(_EMAIL_RE.match(value))


def _number(value: Any) -> float:
    if is_blank(value):
        return 0.0
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        logger.warning("Non-numeric salary value %r counted as 0", value)
        return 0.0


def _display_number(value: float) -> int | float:
    return int(value) if value.is_integer() else value


def pending_records(table: RosterTable, pending_status: str) -> list[ProbationRecord]:
    """Rows whose status column holds the pending marker, with their sheet row number."""
    table.column_indices({c: c for c in REQUIRED_COLUMNS})
    records = []
    for index, row_data in enumerate(table.records()):
        if str(row_data.get(STATUS_COLUMN, "")).strip() != pending_status:
            continue
        fields = {
            field: row_data.get(header, "")
            for field, header in _FIELD_HEADERS.items()
        }
        for text_field in ("employee_name", "employee_id", "department", "manager_name",
                           "manager_email", "employee_email"):
            fields[text_field] = str(fields[text_field] or "").strip()
        records.append(ProbationRecord(row_number=index + 2, row=row_data, **fields))
    return records


def review_document_title(record: ProbationRecord, today: date) -> str:
    return f"{today:%Y%m%d}_{record.employee_id or '未知'}_{record.employee_name or '未知'}_試用期考核表"


def build_review_values(record: ProbationRecord, config: ProbationConfig) -> dict[str, Any]:
    """Substitution map for the review template."""
    values: dict[str, Any] = {}
    for header, placeholder in config.data_mapping.items():
        value = record.row.get(header)
        if value is not None and value != "":
            values[placeholder] = value
    if not is_blank(record.probation_start_date) and not is_blank(record.probation_end_date):
        values["probation_period"] = (
            f"{format_date_simple(record.probation_start_date)} - "
            f"{format_date_simple(record.probation_end_date)}"
        )
    sick = record.sick_leave_hours if not is_blank(record.sick_leave_hours) else 0
    personal = record.personal_leave_hours if not is_blank(record.personal_leave_hours) else 0
    values["leave_summary"] = f"病假 {sick} 小時 / 事假 {personal} 小時"
    total = sum(_number(record.row.get(col)) for col in config.salary_columns)
    values["total_salary"] = _display_number(total)
    return values


class ProbationReviewService:
    """Creates review documents for pending probation rows and notifies the reviewers."""

    def __init__(
        self,
        roster: RosterSourceProtocol,
        documents: DocumentStoreProtocol,
        mailer: MailSenderProtocol,
        config: ProbationConfig,
        app_settings: Settings | None = None,
    ):
        self.roster = roster
        self.documents = documents
        self.mailer = mailer
        self.config = config
        self.settings = app_settings or default_settings

    async def process_pending(self, today: date, send_to: str = "employee") -> BatchReport[ProbationNotice]:
        """Handle every pending row; one row failing does not stop the others.

        Missing status or email columns abort the whole run with MissingColumnError.
        """
        if send_to not in ("employee", "manager"):
            raise ValueError(f"send_to must be 'employee' or 'manager', not {send_to!r}")

        report: BatchReport[ProbationNotice] = BatchReport(
            job="probation_review", started_at=datetime.now(timezone.utc),
        )
        table = await self.roster.get_table(self.config.sheet_name)
        records = pending_records(table, self.config.pending_status)
        logger.info("Found %d pending probation reviews", len(records))

        for record in records:
            key = record.employee_id or f"row {record.row_number}"
            try:
                notice = await self._process(record, today, send_to)
            except HROpsError as e:
                logger.warning("Probation review for %s failed: %s", key, e.message)
                report.items.append(ItemResult[ProbationNotice].failure(key, e.kind, f"處理失敗: {e.message}"))
                continue
            report.items.append(ItemResult[ProbationNotice].success(key, notice))

        report.completed_at = datetime.now(timezone.utc)
        logger.info(
            "Probation reviews processed: %d sent, %d failed",
            len(report.succeeded), len(report.failed),
        )
        return report

    async def _process(self, record: ProbationRecord, today: date, send_to: str) -> ProbationNotice:
        if not validate_email(record.manager_email):
            raise InvalidRecipientError(f'主管Email格式不正確: "{record.manager_email}"')
        if not validate_email(record.employee_email):
            raise InvalidRecipientError(f'員工Email格式不正確: "{record.employee_email}"')

        doc = await self.documents.create_document(
            self.config.template_name,
            review_document_title(record, today),
            self.config.destination_folder_id,
            build_review_values(record, self.config),
        )
        await wait_until_ready(
            self.documents, doc.id,
            timeout_seconds=self.settings.document_ready_timeout_seconds,
            poll_seconds=self.settings.document_ready_poll_seconds,
        )

        editors = [record.manager_email]
        if record.employee_email.lower() != record.manager_email.lower():
            editors.append(record.employee_email)
        await self.documents.add_editors(doc.id, editors)

        due = compute_due_date(record.probation_end_date, today)
        due_text = _DUE_DATE_FALLBACK[due] if isinstance(due, ErrorKind) else format_date_simple(due)
        context = {
            "employee_name": record.employee_name,
            "employee_id": record.employee_id,
            "department": record.department,
            "manager_name": record.manager_name,
            "probation_end": format_date_simple(record.probation_end_date),
            "document_url": doc.url,
            "due_date": due_text,
        }
        hr_cc = [self.config.hr_manager_cc_email] if self.config.hr_manager_cc_email else []
        sender_name = self.config.sender_name or None

        if send_to == "manager":
            await self.mailer.send(
                record.manager_email,
                f"【試用期屆滿考核通知】{record.department}同仁 {record.employee_name} ({record.employee_id})",
                render_email("probation_manager.html", context),
                cc=hr_cc, sender_name=sender_name,
            )
            recipient = record.manager_email
        else:
            await self.mailer.send(
                record.employee_email,
                f"【試用期考核通知】{record.employee_name} 您好，請完成您的線上考核表",
                render_email("probation_employee.html", context),
                cc=[record.manager_email, *hr_cc], sender_name=sender_name,
            )
            recipient = record.employee_email

        logger.info("Probation review sent to %s", mask_email(recipient))
        return ProbationNotice(
            document_url=doc.url,
            due_date=None if isinstance(due, ErrorKind) else due,
            status_text=f"已於 {format_date_simple(today)} 寄出",
        )
