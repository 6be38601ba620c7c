import json
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field


def _maybe_json(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith(("{", "[")):
            return json.loads(stripped)
    return value


def _split_addresses(value: Any) -> Any:
    value = _maybe_json(value)
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return value


JsonStrDict = Annotated[dict[str, str], BeforeValidator(_maybe_json)]
JsonStrList = Annotated[list[str], BeforeValidator(_maybe_json)]
AddressList = Annotated[list[str], BeforeValidator(_split_addresses)]


class EntityConfig(BaseModel):
    match: str
    short_name: str
    full_name: str
    archive_folder_id: str


class BirthdayConfig(BaseModel):
    sheet_name: str
    column_names: JsonStrDict
    excluded_entities: JsonStrList
    entity_a: Annotated[EntityConfig, BeforeValidator(_maybe_json)]
    entity_b: Annotated[EntityConfig, BeforeValidator(_maybe_json)]
    min_seniority_months: int = 3
    reviewer_email: str
    drafts_folder_id: str


class GroupSyncConfig(BaseModel):
    sheet_name: str
    department_group_mapping: JsonStrDict = Field(default_factory=dict)
    header_names: JsonStrDict


class ProbationConfig(BaseModel):
    sheet_name: str
    template_name: str
    destination_folder_id: str
    hr_manager_cc_email: str = ""
    sender_name: str = ""
    data_mapping: JsonStrDict = Field(default_factory=dict)
    salary_columns: JsonStrList = Field(default_factory=list)
    pending_status: str = "待處理"


class EmployeeReportConfig(BaseModel):
    sheet_name: str
    boss_name: str
    boss_email: str
    boss_cc_emails: AddressList = Field(default_factory=list)
    insurance_name: str
    insurance_email: str
    insurance_cc_emails: AddressList = Field(default_factory=list)


class PaymentNoticeConfig(BaseModel):
    recipient: str
    sender_name: str
    forms_url: str = ""


class OfferConfig(BaseModel):
    roster_sheet_name: str
    template_name: str
    destination_folder_id: str
    sender_name: str = ""
    group_company: str
    group_short_name: str
    new_hire_form_url: str = ""
    form_name_field: str = ""
    form_code_field: str = ""
    roster_columns: JsonStrDict


class HRConfig(BaseModel):
    operator_email: str
    birthday: BirthdayConfig
    group_sync: GroupSyncConfig
    probation: ProbationConfig
    employee_report: EmployeeReportConfig
    payment_notice: PaymentNoticeConfig
    offer: OfferConfig
