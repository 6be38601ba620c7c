import logging
from datetime import date, datetime, timedelta

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from hrops.core.exceptions import ErrorKind, InvalidDateError

logger = logging.getLogger(__name__)

OVERDUE_GRACE_DAYS = 14
DEFAULT_GRACE_DAYS = 7

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M:%S")
_DEFAULT_A = datetime(1, 1, 1)
_DEFAULT_B = datetime(2, 2, 2)


def is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_date(value: object) -> date:
    """Return the calendar date of a roster cell, without time of day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidDateError(value)

    raw = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    # A component missing from the cell makes the two parses disagree.
    try:
        first = date_parser.parse(raw, default=_DEFAULT_A).date()
        second = date_parser.parse(raw, default=_DEFAULT_B).date()
    except (ValueError, OverflowError) as e:
        raise InvalidDateError(value) from e
    if first != second:
        raise InvalidDateError(value)
    return first


def compute_due_date(reference_end: object, today: date) -> date | ErrorKind:
    if is_blank(reference_end):
        return ErrorKind.MISSING_INPUT
    try:
        end = parse_date(reference_end)
        today = parse_date(today)
    except InvalidDateError:
        logger.warning("Cannot compute due date from %r", reference_end)
        return ErrorKind.INVALID_DATE

    if today > end:
        return today + timedelta(days=OVERDUE_GRACE_DAYS)
    return end + timedelta(days=DEFAULT_GRACE_DAYS)


def calculate_age(birth_date: date, today: date) -> int:
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def seniority_baseline(today: date) -> date:
    """Last day of the month two months ahead of ``today``."""
    return today + relativedelta(months=2, day=31)


def calculate_seniority_months(hire_date: date, today: date) -> int:
    baseline = seniority_baseline(today)
    months = (baseline.year - hire_date.year) * 12 + (baseline.month - hire_date.month)
    if baseline.day < hire_date.day:
        months -= 1
    return max(months, 0)


def format_seniority_label(total_months: int | None) -> str:
    if total_months is None or total_months < 0:
        return ""
    if total_months < 12:
        return f"{total_months}個月"
    years, months = divmod(total_months, 12)
    if months == 0:
        return f"{years}年"
    return f"{years}年{months}個月"


def format_date_simple(value: object) -> str:
    """``YYYY/M/D``; unparseable input is returned as text."""
    if is_blank(value):
        return ""
    try:
        d = parse_date(value)
    except InvalidDateError:
        return str(value)
    return f"{d.year}/{d.month}/{d.day}"


def roc_year(d: date) -> int:
    """Republic of China calendar year."""
    return d.year - 1911
