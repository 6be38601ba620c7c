from datetime import date, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from hrops.core.exceptions import ErrorKind
from hrops.models.dto.employee import BirthdayEntry

T = TypeVar("T")


class ItemResult(BaseModel, Generic[T]):
    key: str
    ok: bool
    value: T | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None

    @classmethod
    def success(cls, key: str, value: T) -> "ItemResult[T]":
        return cls(key=key, ok=True, value=value)

    @classmethod
    def failure(cls, key: str, kind: ErrorKind, error: str) -> "ItemResult[T]":
        return cls(key=key, ok=False, error_kind=kind, error=error)


class BatchReport(BaseModel, Generic[T]):
    job: str
    started_at: datetime
    completed_at: datetime | None = None
    items: list[ItemResult[T]] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[ItemResult[T]]:
        return [i for i in self.items if i.ok]

    @property
    def failed(self) -> list[ItemResult[T]]:
        return [i for i in self.items if not i.ok]


class Exclusion(BaseModel):
    employee_id: str
    employee_name: str
    reason: ErrorKind


class BirthdayEligibility(BaseModel):
    target_month: int
    entity_a: list[BirthdayEntry] = Field(default_factory=list)
    entity_b: list[BirthdayEntry] = Field(default_factory=list)
    exclusions: list[Exclusion] = Field(default_factory=list)
    unclassified: list[BirthdayEntry] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entity_a and not self.entity_b


class StoredDocument(BaseModel):
    id: str
    name: str
    folder_id: str
    url: str


class BirthdayPreviewResult(BaseModel):
    status: str
    target_month: int
    token: str | None = None
    documents: list[StoredDocument] = Field(default_factory=list)
    eligible_count: int = 0


class BirthdayCommitResult(BaseModel):
    target_month: int
    documents: list[StoredDocument] = Field(default_factory=list)
    eligible_count: int = 0


class MembershipDiff(BaseModel):
    to_add: list[str] = Field(default_factory=list)
    to_remove: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


class MemberFailure(BaseModel):
    email: str
    operation: str
    error: str


class GroupSyncResult(BaseModel):
    department: str = ""
    group_address: str
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    failures: list[MemberFailure] = Field(default_factory=list)
    up_to_date: bool = False
    error: str | None = None


class EmployeeMovementReport(BaseModel):
    report_year: int
    report_month: int
    new_hires: list[str] = Field(default_factory=list)
    departures: list[str] = Field(default_factory=list)
    boss_new_hires: list[str] = Field(default_factory=list)
    emails_sent: list[str] = Field(default_factory=list)


class PendingApproval(BaseModel):
    kind: str = "birthday_report"
    target_month: int
    requested_at: datetime
    preview: dict[str, Any] = Field(default_factory=dict)


class ProbationNotice(BaseModel):
    document_url: str
    due_date: date | None
    status_text: str
