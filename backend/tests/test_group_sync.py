from datetime import date

import pytest

from hrops.core.exceptions import MissingColumnError
from hrops.integrations.directory.client import FakeDirectoryClient
from hrops.integrations.sheets.client import FakeRosterSource
from hrops.integrations.sheets.models import RosterTable
from hrops.services.group_sync import (
    compute_membership_diff,
    reconcile_group,
    required_members_by_department,
    sync_department_groups,
)
from tests.factories import REPORT_HEADERS, TODAY, make_report_row

HEADERS = {"email": "員工Email", "start_date": "到職日期", "end_date": "離職日期", "department": "部門"}


def _table(rows):
    return RosterTable(sheet_name="員工總控制表", headers=REPORT_HEADERS, rows=rows)


class TestComputeMembershipDiff:
    def test_case_and_whitespace_insensitive(self):
        diff = compute_membership_diff(
            ["Alice@Example.com ", "bob@example.com"],
            ["alice@example.com", "carol@example.com"],
        )
        assert diff.to_add == ["bob@example.com"]
        assert diff.to_remove == ["carol@example.com"]

    def test_identical_sets_are_empty(self):
        diff = compute_membership_diff(["a@example.com"], ["A@EXAMPLE.COM"])
        assert diff.is_empty

    def test_blank_entries_ignored(self):
        diff = compute_membership_diff(["", None, "a@example.com"], [""])
        assert diff.to_add == ["a@example.com"]
        assert diff.to_remove == []


class TestRequiredMembers:
    def test_active_employees_grouped_by_department(self):
        table = _table([
            make_report_row(email="A@example.com", department="研究部"),
            make_report_row(email="b@example.com", department="業務部"),
            make_report_row(email="c@example.com", department="研究部", resignation_date="2025-06-01"),
            make_report_row(email="d@example.com", department="研究部", hire_date="2025-07-01"),
            make_report_row(email="e@example.com", department="研究部", resignation_date="2025-06-15"),
        ])
        members = required_members_by_department(table, HEADERS, TODAY)

        assert members == {
            "研究部": {"a@example.com", "e@example.com"},
            "業務部": {"b@example.com"},
        }

    def test_incomplete_and_unreadable_rows_skipped(self):
        table = _table([
            make_report_row(email=""),
            make_report_row(email="x@example.com", hire_date=""),
            make_report_row(email="y@example.com", department=""),
            make_report_row(email="z@example.com", hire_date="someday"),
        ])
        assert required_members_by_department(table, HEADERS, TODAY) == {}

    def test_missing_header_raises(self):
        table = RosterTable(sheet_name="員工總控制表", headers=["部門", "員工Email"], rows=[])
        with pytest.raises(MissingColumnError) as exc_info:
            required_members_by_department(table, HEADERS, TODAY)
        assert exc_info.value.missing == ["到職日期", "離職日期"]


class TestReconcileGroup:
    @pytest.mark.asyncio
    async def test_adds_and_removes(self):
        directory = FakeDirectoryClient({"research@example.com": ["old@example.com", "keep@example.com"]})

        result = await reconcile_group(
            directory, "research@example.com", {"keep@example.com", "new@example.com"}, department="研究部",
        )

        assert result.added == ["new@example.com"]
        assert result.removed == ["old@example.com"]
        assert result.failures == []
        assert sorted(directory.groups["research@example.com"]) == ["keep@example.com", "new@example.com"]

    @pytest.mark.asyncio
    async def test_up_to_date_makes_no_calls(self):
        directory = FakeDirectoryClient({"research@example.com": ["Keep@Example.com"]})

        result = await reconcile_group(directory, "research@example.com", {"keep@example.com"})

        assert result.up_to_date
        assert directory.calls == []

    @pytest.mark.asyncio
    async def test_member_failure_does_not_stop_the_rest(self):
        directory = FakeDirectoryClient(
            {"research@example.com": ["gone@example.com"]},
            failing={"bad@example.com"},
        )

        result = await reconcile_group(
            directory, "research@example.com", {"bad@example.com", "good@example.com"},
        )

        assert result.added == ["good@example.com"]
        assert result.removed == ["gone@example.com"]
        assert [(f.email, f.operation) for f in result.failures] == [("bad@example.com", "add")]

    @pytest.mark.asyncio
    async def test_list_failure_recorded(self):
        directory = FakeDirectoryClient(failing={"research@example.com"})

        result = await reconcile_group(directory, "research@example.com", {"a@example.com"})

        assert result.error is not None
        assert directory.calls == []


class TestSyncDepartmentGroups:
    @pytest.mark.asyncio
    async def test_each_mapped_group_reconciled(self, hr_config):
        roster = FakeRosterSource({"員工總控制表": _table([
            make_report_row(email="a@example.com", department="研究部"),
            make_report_row(email="b@example.com", department="業務部"),
            make_report_row(email="c@example.com", department="行政部"),
        ])})
        directory = FakeDirectoryClient({
            "research@example.com": ["a@example.com"],
            "sales@example.com": ["left@example.com"],
        })

        results = await sync_department_groups(roster, directory, hr_config.group_sync, TODAY)

        by_group = {r.group_address: r for r in results}
        assert set(by_group) == {"research@example.com", "sales@example.com"}
        assert by_group["research@example.com"].up_to_date
        assert by_group["sales@example.com"].added == ["b@example.com"]
        assert by_group["sales@example.com"].removed == ["left@example.com"]

    @pytest.mark.asyncio
    async def test_mapped_department_without_employees_is_emptied(self, hr_config):
        roster = FakeRosterSource({"員工總控制表": _table([
            make_report_row(email="a@example.com", department="研究部"),
        ])})
        directory = FakeDirectoryClient({"sales@example.com": ["left@example.com"]})

        results = await sync_department_groups(roster, directory, hr_config.group_sync, TODAY)

        sales = next(r for r in results if r.group_address == "sales@example.com")
        assert sales.removed == ["left@example.com"]

    @pytest.mark.asyncio
    async def test_empty_roster_skips_sync(self, hr_config):
        roster = FakeRosterSource({"員工總控制表": _table([])})
        directory = FakeDirectoryClient({"sales@example.com": ["someone@example.com"]})

        results = await sync_department_groups(roster, directory, hr_config.group_sync, date(2025, 6, 1))

        assert results == []
        assert directory.calls == []
