import logging
import uuid
from collections.abc import Callable
from datetime import date
from typing import Any
from urllib.parse import urlencode

from hrops.core.exceptions import HROpsError, InvalidRequestError
from hrops.integrations.documents.client import DocumentStoreProtocol
from hrops.integrations.sheets.client import RosterSourceProtocol, RosterWriterProtocol
from hrops.integrations.sheets.ledger import SerialLedgerProtocol
from hrops.models.dto.offer import OfferRequest, OfferResult
from hrops.models.dto.settings import OfferConfig
from hrops.notifications.email import Attachment, MailSenderProtocol, mask_email, render_email
from hrops.notifications.service import notify_operator
from hrops.services.date_rules import is_blank, roc_year

logger = logging.getLogger(__name__)

OFFER_SENT_STATUS = "已寄送Offer"
APPEND_FAILURE_SUBJECT = "【錯誤】錄取資料寫入員工總控制表失敗"

NAME_COLUMN = "員工姓名"
EMAIL_COLUMN = "員工Email"
RESIGNATION_COLUMN = "離職日期"

# company -> (roc year, serial) -> employee id
_ID_FORMATS: dict[str, Callable[[int, int], str]] = {
    "集邦科技": lambda roc, serial: f"{roc}{serial}",
    "荃富科技": lambda roc, serial: f"{roc}{serial}",
    "拓墣科技": lambda roc, serial: "EM" + f"{serial:04d}"[-4:],
    "新報科技": lambda roc, serial: f"TN{roc}" + f"{serial:03d}"[-3:],
}


def serial_rule_name(company: str, employee_type: str, onboarding_date: date) -> str:
    return f"{company}_{employee_type}_{roc_year(onboarding_date)}"


async def generate_employee_id(
    ledger: SerialLedgerProtocol, company: str, employee_type: str, onboarding_date: date,
) -> str:
    """Issue the next employee ID for the company and hire year.

    Regular staff count upward and non-regular staff count downward from the
    ledger's current value.
    """
    formatter = _ID_FORMATS.get(company)
    if formatter is None:
        raise InvalidRequestError(f"無效的公司別: {company!r}")
    rule_name = serial_rule_name(company, employee_type, onboarding_date)
    step = -1 if employee_type == "非正職" else 1
    serial = await ledger.next_serial(rule_name, step)
    return formatter(roc_year(onboarding_date), serial)


def supervisor_name(supervisor: str) -> str:
    """``"Name (nickname)"`` -> ``"Name"``."""
    return supervisor.split(" (")[0].strip()


async def find_supervisor_email(roster: RosterSourceProtocol, sheet_name: str, supervisor: str) -> str:
    """Email of the active employee with the supervisor's name, or ''."""
    name = supervisor_name(supervisor)
    if not name:
        return ""
    table = await roster.get_table(sheet_name)
    table.column_indices({c: c for c in (NAME_COLUMN, EMAIL_COLUMN, RESIGNATION_COLUMN)})
    for row in table.records():
        if str(row[NAME_COLUMN]).strip() == name and is_blank(row[RESIGNATION_COLUMN]):
            return str(row[EMAIL_COLUMN]).strip()
    logger.warning("No active employee named %r to act as supervisor", name)
    return ""


def offer_document_title(request: OfferRequest) -> str:
    return f"符合資格通知書({request.company})-{request.employee_name}"


def offer_subject(company: str, config: OfferConfig) -> str:
    if company == config.group_company:
        return f"{config.group_company}_符合資格通知書"
    return f"{config.group_short_name}/{company}_符合資格通知書"


def build_offer_values(request: OfferRequest, today: date) -> dict[str, Any]:
    onboarding = request.onboarding_date
    return {
        "employee_name": request.employee_name,
        "department": request.department,
        "job_title": request.job_title,
        "company": request.company,
        "salary_text": f"NT${request.salary:,}/月，到職當月薪資依實際到職天數比例計算。",
        "onboarding_text": (
            f"民國{roc_year(onboarding)}年{onboarding.month}月{onboarding.day}日 上午 09 時 30 分"
        ),
        "bonus_text": request.other_salary_info.strip(),
        "document_date": f"中華民國 {roc_year(today)} 年 {today.month} 月 {today.day} 日",
    }


def prefilled_form_url(config: OfferConfig, employee_name: str, verification_code: str) -> str:
    """Personal data form link with the candidate's name and code filled in; '' when unconfigured."""
    if not config.new_hire_form_url:
        return ""
    params = {"usp": "pp_url"}
    if config.form_name_field:
        params[config.form_name_field] = employee_name
    if config.form_code_field:
        params[config.form_code_field] = verification_code
    return f"{config.new_hire_form_url}?{urlencode(params)}"


class OfferLetterService:
    """Issues an employee ID, renders and mails the offer letter, then records the hire."""

    def __init__(
        self,
        roster: RosterSourceProtocol,
        roster_writer: RosterWriterProtocol,
        ledger: SerialLedgerProtocol,
        documents: DocumentStoreProtocol,
        mailer: MailSenderProtocol,
        config: OfferConfig,
        operator_email: str = "",
        code_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.roster = roster
        self.roster_writer = roster_writer
        self.ledger = ledger
        self.documents = documents
        self.mailer = mailer
        self.config = config
        self.operator_email = operator_email
        self.code_factory = code_factory

    async def submit(self, request: OfferRequest, today: date) -> OfferResult:
        """Send the offer for one candidate.

        Nothing is written to the roster unless the mail went out. A failed
        roster append after sending is reported to the operator with the
        issued employee ID and re-raised.
        """
        employee_id = await generate_employee_id(
            self.ledger, request.company, request.employee_type, request.onboarding_date,
        )
        logger.info("Issued employee ID %s for %s", employee_id, request.company)
        supervisor_email = await find_supervisor_email(
            self.roster, self.config.roster_sheet_name, request.supervisor,
        )
        verification_code = self.code_factory()

        title = offer_document_title(request)
        doc = await self.documents.create_document(
            self.config.template_name, title, self.config.destination_folder_id,
            build_offer_values(request, today),
        )
        content = await self.documents.export(doc.id)

        html = render_email("offer_email.html", {
            "employee_name": request.employee_name,
            "company": request.company,
            "form_url": prefilled_form_url(self.config, request.employee_name, verification_code),
        })
        await self.mailer.send(
            str(request.candidate_email),
            offer_subject(request.company, self.config),
            html,
            cc=[str(e) for e in request.cc_emails],
            sender_name=self.config.sender_name or None,
            attachments=[Attachment(filename=f"{title}.html", content=content, mime_type="text/html")],
        )
        logger.info("Offer sent to %s", mask_email(str(request.candidate_email)))

        try:
            await self.roster_writer.append_record(
                self.config.roster_sheet_name,
                self._roster_record(request, employee_id, supervisor_email, verification_code),
            )
        except HROpsError as e:
            await notify_operator(
                self.mailer, self.operator_email,
                subject=APPEND_FAILURE_SUBJECT,
                detail=f"錄取通知已寄出，但員工 {request.employee_name} ({employee_id}) 未寫入名冊: {e.message}",
                context={"job": "offer_letter"},
            )
            raise

        return OfferResult(
            employee_id=employee_id,
            document_url=doc.url,
            supervisor_email=supervisor_email,
            message=f"成功提交！新進人員 {request.employee_name} (員工代號: {employee_id}) 的錄取通知信已寄出。",
        )

    def _roster_record(
        self, request: OfferRequest, employee_id: str, supervisor_email: str, verification_code: str,
    ) -> dict[str, Any]:
        values = {
            "employee_id": employee_id,
            "employee_name": request.employee_name,
            "department": request.department,
            "supervisor_name": supervisor_name(request.supervisor),
            "onboarding_date": f"{request.onboarding_date:%Y/%m/%d}",
            "salary": request.salary,
            "supervisor_email": supervisor_email,
            "company": request.company,
            "status": OFFER_SENT_STATUS,
            "other_salary_info": request.other_salary_info,
            "verification_code": verification_code,
        }
        return {
            header: values[field]
            for field, header in self.config.roster_columns.items()
            if field in values
        }
