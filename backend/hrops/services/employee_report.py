"""Monthly new-hire / departure report for management and the group insurer."""

import logging
from datetime import date

from hrops.core.exceptions import ConfigurationError, HROpsError
from hrops.integrations.sheets.client import RosterSourceProtocol
from hrops.integrations.sheets.models import RosterTable
from hrops.models.dto.employee import EmployeeRecord
from hrops.models.dto.reports import EmployeeMovementReport
from hrops.models.dto.settings import EmployeeReportConfig
from hrops.notifications.email import MailSenderProtocol, render_email
from hrops.services.date_rules import parse_date

logger = logging.getLogger(__name__)

# EmployeeRecord field -> roster header
REPORT_COLUMNS = {
    "department": "部門",
    "name": "員工姓名",
    "nickname": "匿稱",
    "job_title": "職稱",
    "extension": "分機",
    "email": "員工Email",
    "telegram": "Telegram",
    "mobile": "手機",
    "insurance_unit": "投保單位名稱",
    "employee_id": "員工代號",
    "hire_date": "到職日期",
    "resignation_date": "離職日期",
    "id_number": "身份證字號",
    "salary": "薪資",
    "insurance_plan": "意外險計畫",
    "date_of_birth": "出生日期",
}
_RAW_FIELDS = {"hire_date", "resignation_date", "date_of_birth", "salary"}


def report_period(today: date) -> tuple[int, int]:
    """(year, month) of the calendar month before ``today``."""
    if today.month == 1:
        return today.year - 1, 12
    return today.year, today.month - 1


def _in_month(value: object, year: int, month: int) -> bool:
    try:
        d = parse_date(value)
    except HROpsError:
        return False
    return d.year == year and d.month == month


def _format_day(value: object) -> str:
    try:
        return f"{parse_date(value):%Y/%m/%d}"
    except HROpsError:
        return "" if value is None else str(value)


def read_employees(table: RosterTable) -> list[EmployeeRecord]:
    indices = table.column_indices(REPORT_COLUMNS)
    records = []
    for row in table.rows:
        values = {}
        for field, index in indices.items():
            cell = RosterTable.cell(row, index)
            values[field] = cell if field in _RAW_FIELDS else str(cell if cell is not None else "").strip()
        records.append(EmployeeRecord(**values))
    return records


def _insurance_row(record: EmployeeRecord) -> dict:
    return {
        "insurance_unit": record.insurance_unit,
        "employee_id": record.employee_id,
        "name": record.name,
        "hire_date": _format_day(record.hire_date),
        "resignation_date": _format_day(record.resignation_date),
        "id_number": record.id_number,
        "salary": record.salary,
        "insurance_plan": record.insurance_plan,
        "date_of_birth": _format_day(record.date_of_birth),
    }


async def send_employee_movement_report(
    roster: RosterSourceProtocol,
    mailer: MailSenderProtocol,
    config: EmployeeReportConfig,
    today: date,
) -> EmployeeMovementReport:
    """Email last month's joiners and leavers to the boss and the insurance contact.

    The boss is always written to, with a "no changes" note when nobody moved;
    joiners who also left within the month appear to the boss only as
    departures. The insurance contact only hears about months with movement.
    """
    if not config.boss_email:
        raise ConfigurationError("boss_email")
    if not config.insurance_email:
        raise ConfigurationError("insurance_email")

    year, month = report_period(today)
    table = await roster.get_table(config.sheet_name)
    employees = read_employees(table)

    new_hires = [e for e in employees if _in_month(e.hire_date, year, month)]
    departures = [e for e in employees if _in_month(e.resignation_date, year, month)]
    departed_ids = {e.employee_id for e in departures}
    boss_new_hires = [e for e in new_hires if e.employee_id not in departed_ids]

    report = EmployeeMovementReport(
        report_year=year,
        report_month=month,
        new_hires=[e.employee_id for e in new_hires],
        departures=[e.employee_id for e in departures],
        boss_new_hires=[e.employee_id for e in boss_new_hires],
    )

    await mailer.send(
        config.boss_email,
        f"{year}.{month}月員工通訊錄",
        render_email("employee_report_boss.html", {
            "boss_name": config.boss_name,
            "report_year": year,
            "report_month": month,
            "new_hires": boss_new_hires,
            "departures": departures,
        }),
        cc=config.boss_cc_emails,
    )
    report.emails_sent.append(config.boss_email)

    if new_hires or departures:
        await mailer.send(
            config.insurance_email,
            f"{year}年度{month}月之三家公司團保加退保名單",
            render_email("employee_report_insurance.html", {
                "insurance_name": config.insurance_name,
                "report_year": year,
                "report_month": month,
                "new_hires": [_insurance_row(e) for e in new_hires],
                "departures": [_insurance_row(e) for e in departures],
            }),
            cc=config.insurance_cc_emails,
        )
        report.emails_sent.append(config.insurance_email)
    else:
        logger.info("No employee movement in %d/%d", year, month)

    logger.info(
        "Employee movement report for %d/%d sent: %d new hires, %d departures",
        year, month, len(new_hires), len(departures),
    )
    return report
