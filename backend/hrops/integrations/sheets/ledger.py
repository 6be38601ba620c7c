import asyncio
import logging
from typing import Protocol, runtime_checkable

from hrops.core.exceptions import MissingSerialRuleError
from hrops.integrations.sheets.client import GoogleSheetsRosterClient, a1_range

logger = logging.getLogger(__name__)


@runtime_checkable
class SerialLedgerProtocol(Protocol):
    async def next_serial(self, rule_name: str, step: int) -> int:
        """Advance the counter of ``rule_name`` by ``step`` and return the new value."""
        ...


def _as_int(value: object, rule_name: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise MissingSerialRuleError(rule_name, f"has a non-numeric counter {value!r}") from e


class SheetsSerialLedger:
    """Counters kept in a two-column sheet: rule name in A, last issued serial in B."""

    def __init__(self, client: GoogleSheetsRosterClient, sheet_name: str):
        self._client = client
        self._sheet_name = sheet_name
        self._lock = asyncio.Lock()

    async def next_serial(self, rule_name: str, step: int) -> int:
        async with self._lock:
            rows = await self._client.get_values(a1_range(self._sheet_name, "A:B"), self._sheet_name)
            for index, row in enumerate(rows):
                if row and str(row[0]).strip() == rule_name:
                    current = _as_int(row[1] if len(row) > 1 else "", rule_name)
                    new_serial = current + step
                    await self._client.update_values(
                        a1_range(self._sheet_name, f"B{index + 1}"), [[new_serial]], self._sheet_name,
                    )
                    logger.info("Serial %s advanced to %d", rule_name, new_serial)
                    return new_serial
            raise MissingSerialRuleError(rule_name)


class InMemorySerialLedger:
    def __init__(self, counters: dict[str, int] | None = None):
        self.counters = dict(counters or {})

    async def next_serial(self, rule_name: str, step: int) -> int:
        if rule_name not in self.counters:
            raise MissingSerialRuleError(rule_name)
        self.counters[rule_name] += step
        return self.counters[rule_name]
