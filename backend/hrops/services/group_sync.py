import logging
from collections.abc import Iterable
from datetime import date

from hrops.core.exceptions import HROpsError
from hrops.integrations.directory.client import DirectoryClientProtocol
from hrops.integrations.sheets.client import RosterSourceProtocol
from hrops.integrations.sheets.models import RosterTable
from hrops.models.dto.reports import GroupSyncResult, MemberFailure, MembershipDiff
from hrops.models.dto.settings import GroupSyncConfig
from hrops.notifications.email import mask_email
from hrops.services.date_rules import is_blank, parse_date

logger = logging.getLogger(__name__)


def normalize_email(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def compute_membership_diff(required: Iterable[str], current: Iterable[str]) -> MembershipDiff:
    """Adds and removals that turn ``current`` into ``required``, compared case-insensitively."""
    required_set = {e for e in (normalize_email(v) for v in required) if e}
    current_set = {e for e in (normalize_email(v) for v in current) if e}
    return MembershipDiff(
        to_add=sorted(required_set - current_set),
        to_remove=sorted(current_set - required_set),
    )


def required_members_by_department(
    table: RosterTable, header_names: dict[str, str], today: date,
) -> dict[str, set[str]]:
    """Active employees per department: started on or before today, not yet left.

    Rows without email, start date or department are skipped, as are rows
    whose dates cannot be read.
    """
    indices = table.column_indices(header_names)
    members: dict[str, set[str]] = {}
    for row in table.rows:
        email = normalize_email(RosterTable.cell(row, indices["email"]))
        start_raw = RosterTable.cell(row, indices["start_date"])
        end_raw = RosterTable.cell(row, indices["end_date"])
        department = str(RosterTable.cell(row, indices["department"]) or "").strip()
        if not email or is_blank(start_raw) or not department:
            continue
        try:
            start = parse_date(start_raw)
            end = None if is_blank(end_raw) else parse_date(end_raw)
        except HROpsError:
            logger.warning("Skipping %s: unreadable start/end date", mask_email(email))
            continue
        if start <= today and (end is None or end >= today):
            members.setdefault(department, set()).add(email)
    return members


async def reconcile_group(
    directory: DirectoryClientProtocol,
    group_address: str,
    required: Iterable[str],
    department: str = "",
) -> GroupSyncResult:
    """Bring one group's membership in line with ``required``, one member at a time.

    A failed add or remove is recorded and the remaining members are still
    processed. Listing failures are recorded on the result as well.
    """
    result = GroupSyncResult(department=department, group_address=group_address)
    try:
        current = await directory.list_members(group_address)
    except HROpsError as e:
        logger.error("Cannot list members of %s: %s", group_address, e.message)
        result.error = e.message
        return result

    diff = compute_membership_diff(required, current)
    if diff.is_empty:
        logger.info("Group %s already up to date", group_address)
        result.up_to_date = True
        return result

    for email in diff.to_add:
        try:
            await directory.insert_member(group_address, email)
            result.added.append(email)
            logger.info("Added %s to %s", mask_email(email), group_address)
        except HROpsError as e:
            logger.warning("Failed to add %s to %s: %s", mask_email(email), group_address, e.message)
            result.failures.append(MemberFailure(email=email, operation="add", error=e.message))

    for email in diff.to_remove:
        try:
            await directory.remove_member(group_address, email)
            result.removed.append(email)
            logger.info("Removed %s from %s", mask_email(email), group_address)
        except HROpsError as e:
            logger.warning("Failed to remove %s from %s: %s", mask_email(email), group_address, e.message)
            result.failures.append(MemberFailure(email=email, operation="remove", error=e.message))

    return result


async def sync_department_groups(
    roster: RosterSourceProtocol,
    directory: DirectoryClientProtocol,
    config: GroupSyncConfig,
    today: date,
) -> list[GroupSyncResult]:
    """Reconcile every mapped department group against today's active roster."""
    table = await roster.get_table(config.sheet_name)
    required = required_members_by_department(table, config.header_names, today)
    if not required:
        logger.info("No active employees found in '%s', group sync skipped", config.sheet_name)
        return []

    results = []
    for department, group_address in config.department_group_mapping.items():
        result = await reconcile_group(
            directory, group_address, required.get(department, set()), department=department,
        )
        results.append(result)

    logger.info(
        "Group sync finished: %d groups, %d added, %d removed, %d failures",
        len(results),
        sum(len(r.added) for r in results),
        sum(len(r.removed) for r in results),
        sum(len(r.failures) + (1 if r.error else 0) for r in results),
    )
    return results
