from typing import Any

from pydantic import BaseModel, Field

from hrops.core.exceptions import MissingColumnError


class RosterTable(BaseModel):
    sheet_name: str
    headers: list[str]
    rows: list[list[Any]] = Field(default_factory=list)

    def column_indices(self, columns: dict[str, str]) -> dict[str, int]:
        """Map each logical key to its header position.

        Raises MissingColumnError naming every absent header, not just the first.
        """
        positions = {h.strip(): i for i, h in enumerate(self.headers) if isinstance(h, str)}
        missing = [name for name in columns.values() if name not in positions]
        if missing:
            raise MissingColumnError(list(dict.fromkeys(missing)), self.sheet_name)
        return {key: positions[name] for key, name in columns.items()}

    def records(self) -> list[dict[str, Any]]:
        """Rows as header -> value dicts; short rows are padded with ''."""
        headers = [str(h).strip() for h in self.headers]
        return [
            {h: (row[i] if i < len(row) else "") for i, h in enumerate(headers)}
            for row in self.rows
        ]

    @staticmethod
    def cell(row: list[Any], index: int) -> Any:
        return row[index] if index < len(row) else ""
