"""Tests for probation review documents and notification emails."""
from datetime import date

import pytest

from hrops.core.config import settings
from hrops.core.exceptions import ErrorKind, MissingColumnError
from hrops.integrations.documents.client import FakeDocumentStore, LocalDocumentStore
from hrops.integrations.sheets.client import FakeRosterSource
from hrops.notifications.email import FakeMailSender
from hrops.services.probation_service import (
    ProbationReviewService,
    build_review_values,
    pending_records,
    review_document_title,
    validate_email,
)
from tests.factories import PROBATION_HEADERS, TODAY, make_probation_row, make_probation_table


def _service(rows, hr_config, documents=None, mailer=None, headers=None):
    roster = FakeRosterSource({"試用期考核": make_probation_table(rows, headers=headers)})
    return ProbationReviewService(
        roster, documents or FakeDocumentStore(), mailer or FakeMailSender(), hr_config.probation,
    )


class TestValidateEmail:
    @pytest.mark.parametrize("value", ["a@example.com", "first.last@sub.example.co"])
    def test_valid(self, value):
        assert validate_email(value)

    @pytest.mark.parametrize("value", ["", "bossexample.com", "boss@example", "a b@example.com"])
    def test_invalid(self, value):
        assert not validate_email(value)


class TestPendingRecords:
    def test_only_pending_rows_with_sheet_row_numbers(self):
        table = make_probation_table([
            make_probation_row(employee_id="P001"),
            make_probation_row(employee_id="P002", status="已於 2025/6/1 寄出"),
            make_probation_row(employee_id="P003", status=" 待處理 "),
        ])
        records = pending_records(table, "待處理")

        assert [(r.employee_id, r.row_number) for r in records] == [("P001", 2), ("P003", 4)]
        assert records[0].manager_email == "boss@example.com"
        assert records[0].row["職稱"] == "工程師"

    def test_missing_required_columns(self):
        headers = [h for h in PROBATION_HEADERS if h not in ("通知信狀態", "員工Email")]
        table = make_probation_table([], headers=headers)

        with pytest.raises(MissingColumnError) as exc_info:
            pending_records(table, "待處理")
        assert exc_info.value.missing == ["通知信狀態", "員工Email"]


class TestBuildReviewValues:
    def test_values(self, hr_config):
        record = pending_records(make_probation_table([make_probation_row()]), "待處理")[0]

        values = build_review_values(record, hr_config.probation)

        assert values["employee_name"] == "陳小華"
        assert values["employee_id"] == "P001"
        assert values["department"] == "研究部"
        assert values["job_title"] == "工程師"
        assert values["probation_period"] == "2025/3/1 - 2025/6/10"
        assert values["leave_summary"] == "病假 8 小時 / 事假 0 小時"
        assert values["total_salary"] == 45400

    def test_non_numeric_salary_counts_as_zero(self, hr_config):
        row = make_probation_row(salaries=("40,000", "n/a", "", 500.5))
        record = pending_records(make_probation_table([row]), "待處理")[0]

        assert build_review_values(record, hr_config.probation)["total_salary"] == 40500.5

    def test_period_omitted_without_dates(self, hr_config):
        record = pending_records(make_probation_table([make_probation_row(start="")]), "待處理")[0]
        assert "probation_period" not in build_review_values(record, hr_config.probation)

    def test_title(self):
        record = pending_records(make_probation_table([make_probation_row()]), "待處理")[0]
        assert review_document_title(record, TODAY) == "20250615_P001_陳小華_試用期考核表"


class TestProcessPending:
    @pytest.mark.asyncio
    async def test_employee_mode(self, hr_config, documents, mailer):
        service = _service([make_probation_row()], hr_config, documents, mailer)

        report = await service.process_pending(TODAY)

        assert len(report.succeeded) == 1
        notice = report.succeeded[0].value
        assert notice.due_date == date(2025, 6, 29)
        assert notice.status_text == "已於 2025/6/15 寄出"

        doc_id = "probation-reviews/20250615_P001_陳小華_試用期考核表"
        assert documents.documents[doc_id]["template"] == "probation_review.html"
        assert documents.editors[doc_id] == ["boss@example.com", "hua@example.com"]

        msg = mailer.sent[0]
        assert msg.to == "hua@example.com"
        assert msg.cc == ["boss@example.com", "hr-lead@example.com"]
        assert msg.sender_name == "人資室"
        assert "2025/6/29" in msg.html_body
        assert "林主管" in msg.html_body

    @pytest.mark.asyncio
    async def test_manager_mode(self, hr_config, mailer):
        service = _service([make_probation_row(end="2025-06-20")], hr_config, mailer=mailer)

        report = await service.process_pending(TODAY, send_to="manager")

        assert report.succeeded[0].value.due_date == date(2025, 6, 27)
        msg = mailer.sent[0]
        assert msg.to == "boss@example.com"
        assert msg.cc == ["hr-lead@example.com"]
        assert "研究部同仁 陳小華 (P001)" in msg.subject

    @pytest.mark.asyncio
    async def test_same_address_added_as_editor_once(self, hr_config, documents):
        row = make_probation_row(manager_email="same@example.com", employee_email="Same@example.com")
        service = _service([row], hr_config, documents)

        await service.process_pending(TODAY)

        assert list(documents.editors.values()) == [["same@example.com"]]

    @pytest.mark.asyncio
    async def test_invalid_email_fails_row_only(self, hr_config, documents, mailer):
        rows = [
            make_probation_row(employee_id="P001", manager_email="not-an-email"),
            make_probation_row(employee_id="P002"),
        ]
        service = _service(rows, hr_config, documents, mailer)

        report = await service.process_pending(TODAY)

        failed = report.failed[0]
        assert failed.key == "P001"
        assert failed.error_kind is ErrorKind.INCOMPLETE_DATA
        assert failed.error.startswith("處理失敗: ")
        assert "not-an-email" in failed.error
        assert [i.key for i in report.succeeded] == ["P002"]
        assert len(documents.documents) == 1
        assert len(mailer.sent) == 1

    @pytest.mark.asyncio
    async def test_document_never_ready(self, hr_config, mailer, monkeypatch):
        monkeypatch.setattr(settings, "document_ready_timeout_seconds", 0.01)
        documents = FakeDocumentStore(ready_after_polls=10**9)
        service = _service([make_probation_row()], hr_config, documents, mailer)

        report = await service.process_pending(TODAY)

        assert report.failed[0].error_kind is ErrorKind.EXTERNAL_CALL_FAILURE
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_unwritable_document_fails_row_only(self, hr_config, mailer, tmp_path):
        rows = [
            make_probation_row(employee_id="P001", name="長" * 300),
            make_probation_row(employee_id="P002"),
        ]
        documents = LocalDocumentStore(root=tmp_path / "docs", template_dir=tmp_path / "custom")
        service = _service(rows, hr_config, documents, mailer)

        report = await service.process_pending(TODAY)

        assert report.failed[0].key == "P001"
        assert report.failed[0].error_kind is ErrorKind.EXTERNAL_CALL_FAILURE
        assert [i.key for i in report.succeeded] == ["P002"]
        assert [m.to for m in mailer.sent] == ["hua@example.com"]

    @pytest.mark.asyncio
    async def test_mail_failure_recorded(self, hr_config, documents):
        mailer = FakeMailSender(fail_for={"hua@example.com"})
        service = _service([make_probation_row()], hr_config, documents, mailer)

        report = await service.process_pending(TODAY)

        assert report.failed[0].error_kind is ErrorKind.EXTERNAL_CALL_FAILURE

    @pytest.mark.asyncio
    async def test_missing_end_date_uses_placeholder(self, hr_config, mailer):
        service = _service([make_probation_row(end="")], hr_config, mailer=mailer)

        report = await service.process_pending(TODAY)

        assert report.succeeded[0].value.due_date is None
        assert "請確認試用截止日" in mailer.sent[0].html_body

    @pytest.mark.asyncio
    async def test_nothing_pending(self, hr_config, mailer):
        service = _service([make_probation_row(status="")], hr_config, mailer=mailer)

        report = await service.process_pending(TODAY)

        assert report.items == []
        assert report.completed_at is not None

    @pytest.mark.asyncio
    async def test_missing_columns_abort_run(self, hr_config):
        headers = [h for h in PROBATION_HEADERS if h != "主管Email"]
        service = _service([], hr_config, headers=headers)

        with pytest.raises(MissingColumnError):
            await service.process_pending(TODAY)

    @pytest.mark.asyncio
    async def test_unknown_send_to(self, hr_config):
        service = _service([], hr_config)
        with pytest.raises(ValueError):
            await service.process_pending(TODAY, send_to="everyone")
