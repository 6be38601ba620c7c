from datetime import date

import pytest

from hrops.core.exceptions import ConfigurationError, MissingColumnError
from hrops.integrations.sheets.client import FakeRosterSource
from hrops.integrations.sheets.models import RosterTable
from hrops.services.employee_report import report_period, send_employee_movement_report
from tests.factories import REPORT_HEADERS, make_report_row


def _roster(rows, headers=REPORT_HEADERS):
    return FakeRosterSource({"員工總控制表": RosterTable(sheet_name="員工總控制表", headers=headers, rows=rows)})


class TestReportPeriod:
    def test_previous_month(self):
        assert report_period(date(2025, 6, 1)) == (2025, 5)

    def test_january_reports_december(self):
        assert report_period(date(2025, 1, 1)) == (2024, 12)


class TestSendEmployeeMovementReport:
    @pytest.mark.asyncio
    async def test_movement_emails_boss_and_insurer(self, hr_config, mailer):
        roster = _roster([
            make_report_row(employee_id="N001", name="新人", hire_date="2025-05-12"),
            make_report_row(employee_id="L001", name="林大明", hire_date="2019-03-01", resignation_date="2025-05-31"),
            make_report_row(employee_id="S001", name="老員工", hire_date="2018-01-01"),
        ])

        report = await send_employee_movement_report(roster, mailer, hr_config.employee_report, date(2025, 6, 1))

        assert (report.report_year, report.report_month) == (2025, 5)
        assert report.new_hires == ["N001"]
        assert report.departures == ["L001"]
        assert report.emails_sent == ["boss@example.com", "insurer@example.com"]

        boss, insurer = mailer.sent
        assert boss.subject == "2025.5月員工通訊錄"
        assert boss.cc == ["cc1@example.com", "cc2@example.com"]
        assert "新人" in boss.html_body and "林大明" in boss.html_body
        assert "老員工" not in boss.html_body

        assert insurer.subject == "2025年度5月之三家公司團保加退保名單"
        assert insurer.cc == ["hr-lead@example.com"]
        assert "2025/05/12" in insurer.html_body
        assert "A123456789" in insurer.html_body

    @pytest.mark.asyncio
    async def test_hired_and_left_same_month_shown_to_boss_as_departure(self, hr_config, mailer):
        roster = _roster([
            make_report_row(employee_id="T001", name="短期", hire_date="2025-05-02", resignation_date="2025-05-20"),
        ])

        report = await send_employee_movement_report(roster, mailer, hr_config.employee_report, date(2025, 6, 1))

        assert report.new_hires == ["T001"]
        assert report.departures == ["T001"]
        assert report.boss_new_hires == []

    @pytest.mark.asyncio
    async def test_no_movement_only_boss_is_told(self, hr_config, mailer):
        roster = _roster([make_report_row(hire_date="2018-01-01")])

        report = await send_employee_movement_report(roster, mailer, hr_config.employee_report, date(2025, 6, 1))

        assert report.emails_sent == ["boss@example.com"]
        assert len(mailer.sent) == 1
        assert "上個月無人員異動" in mailer.sent[0].html_body

    @pytest.mark.asyncio
    async def test_january_run_covers_december(self, hr_config, mailer):
        roster = _roster([make_report_row(employee_id="N002", hire_date="2024-12-16")])

        report = await send_employee_movement_report(roster, mailer, hr_config.employee_report, date(2025, 1, 1))

        assert report.new_hires == ["N002"]
        assert mailer.sent[0].subject == "2024.12月員工通訊錄"

    @pytest.mark.asyncio
    async def test_unreadable_dates_ignored(self, hr_config, mailer):
        roster = _roster([make_report_row(hire_date="unknown", resignation_date="n/a")])

        report = await send_employee_movement_report(roster, mailer, hr_config.employee_report, date(2025, 6, 1))

        assert report.new_hires == [] and report.departures == []

    @pytest.mark.asyncio
    async def test_missing_recipient_configuration(self, hr_config, mailer):
        config = hr_config.employee_report.model_copy(update={"insurance_email": ""})

        with pytest.raises(ConfigurationError) as exc_info:
            await send_employee_movement_report(_roster([]), mailer, config, date(2025, 6, 1))

        assert exc_info.value.key == "insurance_email"
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_missing_column(self, hr_config, mailer):
        headers = [h for h in REPORT_HEADERS if h != "身份證字號"]
        with pytest.raises(MissingColumnError):
            await send_employee_movement_report(_roster([], headers), mailer, hr_config.employee_report, date(2025, 6, 1))
