"""Tests for the birthday report preview / approve / reject cycle."""
from datetime import date

import pytest

from hrops.core.exceptions import ExpiredOrInvalidTokenError, ExternalCallFailure, MissingColumnError
from hrops.integrations.documents.client import FakeDocumentStore
from hrops.integrations.sheets.client import FakeRosterSource
from hrops.notifications.email import FakeMailSender
from hrops.services.approval import ApprovalState
from hrops.services.birthday_service import (
    APPROVAL_SUBJECT,
    FAILURE_SUBJECT,
    BirthdayReportService,
)
from tests.factories import BIRTHDAY_HEADERS, TODAY, make_birthday_row, make_birthday_table


def _roster(rows, headers=None):
    return FakeRosterSource({"員工總控制表": make_birthday_table(rows, headers=headers)})


def _service(roster, documents, mailer, workflow, hr_config):
    return BirthdayReportService(
        roster, documents, mailer, workflow, hr_config.birthday,
        operator_email=hr_config.operator_email,
    )


@pytest.fixture
def rows():
    return [
        make_birthday_row(employee_id="A001", name="王小明"),
        make_birthday_row(employee_id="A002", name="李大同", date_of_birth="1988-07-25"),
        make_birthday_row(employee_id="B001", name="張三", company="拓墣科技股份有限公司"),
        make_birthday_row(employee_id="A003", name="離職者", resignation_date="2025-05-01"),
    ]


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_creates_drafts_and_emails_reviewer(self, rows, documents, mailer, workflow, hr_config):
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)

        result = await service.preview(TODAY)

        assert result.status == "pending_approval"
        assert result.target_month == 7
        assert result.token == "token-1"
        assert result.eligible_count == 3
        assert [d.name for d in result.documents] == ["集邦2507壽星", "拓墣2507壽星"]
        assert all(d.folder_id == "birthday-drafts" for d in result.documents)

        values = documents.documents["birthday-drafts/集邦2507壽星"]["values"]
        assert values["company_full_name"] == "集邦科技股份有限公司"
        assert values["print_date"] == "2025/06/15"
        assert [e.employee_id for e in values["employees"]] == ["A001", "A002"]

        assert len(mailer.sent) == 1
        msg = mailer.sent[0]
        assert msg.to == "reviewer@example.com"
        assert msg.subject == APPROVAL_SUBJECT
        assert "https://hr.example.com/api/birthday-report/review?action=approve&amp;token=token-1" in msg.html_body
        assert "action=reject&amp;token=token-1" in msg.html_body
        assert workflow.state_of("token-1") is ApprovalState.PENDING_APPROVAL

    @pytest.mark.asyncio
    async def test_only_non_empty_entity_gets_a_document(self, documents, mailer, workflow, hr_config):
        service = _service(_roster([make_birthday_row()]), documents, mailer, workflow, hr_config)

        result = await service.preview(TODAY)

        assert [d.name for d in result.documents] == ["集邦2507壽星"]

    @pytest.mark.asyncio
    async def test_no_eligible_employees_sends_nothing(self, documents, mailer, workflow, hr_config):
        roster = _roster([make_birthday_row(date_of_birth="1990-01-01")])
        service = _service(roster, documents, mailer, workflow, hr_config)

        result = await service.preview(TODAY)

        assert result.status == "no_eligible_employees"
        assert result.token is None
        assert documents.documents == {}
        assert mailer.sent == []
        assert workflow.state_of("token-1") is ApprovalState.NO_REQUEST

    @pytest.mark.asyncio
    async def test_missing_column_alerts_operator(self, documents, mailer, workflow, hr_config):
        headers = [h for h in BIRTHDAY_HEADERS if h != "出生日期"]
        roster = _roster([], headers=headers)
        service = _service(roster, documents, mailer, workflow, hr_config)

        with pytest.raises(MissingColumnError):
            await service.preview(TODAY)

        assert [m.to for m in mailer.sent] == ["ops@example.com"]
        assert mailer.sent[0].subject == FAILURE_SUBJECT
        assert "出生日期" in mailer.sent[0].html_body

    @pytest.mark.asyncio
    async def test_document_failure_alerts_operator(self, rows, mailer, workflow, hr_config):
        documents = FakeDocumentStore(fail_templates={"birthday_list.html"})
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)

        with pytest.raises(ExternalCallFailure):
            await service.preview(TODAY)

        assert [m.subject for m in mailer.sent] == [FAILURE_SUBJECT]


class TestCommit:
    @pytest.mark.asyncio
    async def test_approve_archives_final_lists(self, rows, documents, mailer, workflow, hr_config):
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)
        preview = await service.preview(TODAY)

        result = await service.commit(preview.token)

        assert result.target_month == 7
        assert result.eligible_count == 3
        assert [(d.folder_id, d.name) for d in result.documents] == [
            ("birthday-trendforce", "集邦2507壽星"),
            ("birthday-topology", "拓墣2507壽星"),
        ]
        assert workflow.state_of(preview.token) is ApprovalState.COMMITTED

    @pytest.mark.asyncio
    async def test_late_approval_keeps_preview_month(self, rows, documents, mailer, workflow, hr_config):
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)
        preview = await service.preview(date(2025, 6, 30))

        result = await service.commit(preview.token, today=date(2025, 7, 1))

        assert result.target_month == 7
        assert result.documents[0].name == "集邦2507壽星"

    @pytest.mark.asyncio
    async def test_commit_reads_current_roster(self, rows, documents, mailer, workflow, hr_config):
        roster = _roster(rows)
        service = _service(roster, documents, mailer, workflow, hr_config)
        preview = await service.preview(TODAY)
        roster.tables["員工總控制表"] = make_birthday_table(rows[:1])

        result = await service.commit(preview.token)

        assert result.eligible_count == 1
        assert [d.name for d in result.documents] == ["集邦2507壽星"]

    @pytest.mark.asyncio
    async def test_second_approval_fails_without_side_effects(self, rows, documents, mailer, workflow, hr_config):
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)
        preview = await service.preview(TODAY)
        await service.commit(preview.token)
        created = dict(documents.documents)

        with pytest.raises(ExpiredOrInvalidTokenError):
            await service.commit(preview.token)
        assert documents.documents == created

    @pytest.mark.asyncio
    async def test_unknown_token(self, documents, mailer, workflow, hr_config):
        service = _service(_roster([]), documents, mailer, workflow, hr_config)
        with pytest.raises(ExpiredOrInvalidTokenError):
            await service.commit("forged")

    @pytest.mark.asyncio
    async def test_expired_token(self, rows, documents, mailer, workflow, hr_config, clock):
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)
        preview = await service.preview(TODAY)
        clock.advance(3601)

        with pytest.raises(ExpiredOrInvalidTokenError):
            await service.commit(preview.token)

    @pytest.mark.asyncio
    async def test_archive_failure_alerts_operator(self, rows, workflow, hr_config):
        documents = FakeDocumentStore()
        mailer = FakeMailSender()
        roster = _roster(rows)
        service = _service(roster, documents, mailer, workflow, hr_config)
        preview = await service.preview(TODAY)
        del roster.tables["員工總控制表"]

        with pytest.raises(ExternalCallFailure):
            await service.commit(preview.token)

        assert mailer.sent[-1].subject == FAILURE_SUBJECT
        assert mailer.sent[-1].to == "ops@example.com"


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_archives_nothing(self, rows, documents, mailer, workflow, hr_config):
        service = _service(_roster(rows), documents, mailer, workflow, hr_config)
        preview = await service.preview(TODAY)
        drafts = dict(documents.documents)

        service.reject(preview.token)

        assert documents.documents == drafts
        assert workflow.state_of(preview.token) is ApprovalState.REJECTED
        with pytest.raises(ExpiredOrInvalidTokenError):
            await service.commit(preview.token)
