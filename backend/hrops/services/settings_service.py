"""Business settings: key-value overrides on top of built-in defaults.

Values are plain strings; structured values (mappings, lists) are stored as
JSON. ``load_hr_config`` resolves every key once (store value wins over the
default) and validates the result into the typed ``HRConfig`` consumed by the
services.
"""

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from hrops.core.exceptions import ConfigurationError
from hrops.models.dto.settings import (
    BirthdayConfig,
    EmployeeReportConfig,
    GroupSyncConfig,
    HRConfig,
    OfferConfig,
    PaymentNoticeConfig,
    ProbationConfig,
)

logger = logging.getLogger(__name__)


def _json(value) -> str:
    return json.dumps(value, ensure_ascii=False)


DEFAULT_SETTINGS = {
    "operator_email": "hr-ops@your-company.com",
    "employee_sheet_name": "員工總控制表",
    # Birthday report
    "birthday_column_names": _json({
        "company": "投保單位名稱",
        "department_code": "部門代號",
        "department_name": "部門名稱",
        "employee_id": "員工代號",
        "employee_name": "員工姓名",
        "date_of_birth": "出生日期",
        "hire_date": "到職日期",
        "resignation_date": "離職日期",
        "insurance_unit": "投保單位名稱",
    }),
    "birthday_excluded_entities": _json(["新報", "荃富"]),
    "birthday_entity_a": _json({
        "match": "集邦",
        "short_name": "集邦",
        "full_name": "集邦科技股份有限公司",
        "archive_folder_id": "birthday-trendforce",
    }),
    "birthday_entity_b": _json({
        "match": "拓墣",
        "short_name": "拓墣",
        "full_name": "拓墣科技股份有限公司",
        "archive_folder_id": "birthday-topology",
    }),
    "birthday_min_seniority_months": "3",
    "birthday_reviewer_email": "hr-ops@your-company.com",
    "birthday_drafts_folder_id": "birthday-drafts",
    # Group sync
    "group_sync_sheet_name": "員工總控制表",
    "department_group_mapping": "{}",
    "group_sync_header_names": _json({
        "email": "員工Email",
        "start_date": "到職日期",
        "end_date": "離職日期",
        "department": "部門",
    }),
    # Probation review
    "probation_sheet_name": "試用期考核",
    "probation_template_name": "probation_review.html",
    "probation_destination_folder_id": "probation-reviews",
    "hr_manager_cc_email": "",
    "sender_name": "HR",
    "probation_data_mapping": _json({
        "部門": "department",
        "員工姓名": "employee_name",
        "員工代號": "employee_id",
        "職稱": "job_title",
    }),
    "probation_salary_columns": _json(["薪資", "職務加給", "伙食津貼", "全勤獎金"]),
    # Monthly employee report
    "boss_name": "",
    "boss_email": "",
    "boss_cc_email": "",
    "insurance_name": "",
    "insurance_email": "",
    "insurance_cc_emails": "",
    # Payment notice
    "payment_notice_recipient": "",
    "payment_sender_name": "管理中心會計處",
    "payment_forms_url": "",
    # Offer letters
    "offer_template_name": "offer_letter.html",
    "offer_destination_folder_id": "offer-letters",
    "offer_sender_name": "人資室",
    "offer_group_company": "集邦科技",
    "offer_group_short_name": "集邦",
    "new_hire_form_url": "",
    "new_hire_form_name_field": "",
    "new_hire_form_code_field": "",
    "offer_roster_columns": _json({
        "employee_id": "員工代號",
        "employee_name": "員工姓名",
        "department": "部門",
        "supervisor_name": "直屬主管",
        "onboarding_date": "到職日期",
        "salary": "薪資",
        "supervisor_email": "主管Email",
        "company": "公司別",
        "status": "狀態",
        "other_salary_info": "其他薪資",
        "verification_code": "驗證碼",
    }),
}

# Section field -> settings key
_SECTION_KEYS: dict[str, dict[str, str]] = {
    "birthday": {
        "sheet_name": "employee_sheet_name",
        "column_names": "birthday_column_names",
        "excluded_entities": "birthday_excluded_entities",
        "entity_a": "birthday_entity_a",
        "entity_b": "birthday_entity_b",
        "min_seniority_months": "birthday_min_seniority_months",
        "reviewer_email": "birthday_reviewer_email",
        "drafts_folder_id": "birthday_drafts_folder_id",
    },
    "group_sync": {
        "sheet_name": "group_sync_sheet_name",
        "department_group_mapping": "department_group_mapping",
        "header_names": "group_sync_header_names",
    },
    "probation": {
        "sheet_name": "probation_sheet_name",
        "template_name": "probation_template_name",
        "destination_folder_id": "probation_destination_folder_id",
        "hr_manager_cc_email": "hr_manager_cc_email",
        "sender_name": "sender_name",
        "data_mapping": "probation_data_mapping",
        "salary_columns": "probation_salary_columns",
    },
    "employee_report": {
        "sheet_name": "employee_sheet_name",
        "boss_name": "boss_name",
        "boss_email": "boss_email",
        "boss_cc_emails": "boss_cc_email",
        "insurance_name": "insurance_name",
        "insurance_email": "insurance_email",
        "insurance_cc_emails": "insurance_cc_emails",
    },
    "payment_notice": {
        "recipient": "payment_notice_recipient",
        "sender_name": "payment_sender_name",
        "forms_url": "payment_forms_url",
    },
    "offer": {
        "roster_sheet_name": "employee_sheet_name",
        "template_name": "offer_template_name",
        "destination_folder_id": "offer_destination_folder_id",
        "sender_name": "offer_sender_name",
        "group_company": "offer_group_company",
        "group_short_name": "offer_group_short_name",
        "new_hire_form_url": "new_hire_form_url",
        "form_name_field": "new_hire_form_name_field",
        "form_code_field": "new_hire_form_code_field",
        "roster_columns": "offer_roster_columns",
    },
}

_SECTION_MODELS: dict[str, type[BaseModel]] = {
    "birthday": BirthdayConfig,
    "group_sync": GroupSyncConfig,
    "probation": ProbationConfig,
    "employee_report": EmployeeReportConfig,
    "payment_notice": PaymentNoticeConfig,
    "offer": OfferConfig,
}


@runtime_checkable
class SettingsStoreProtocol(Protocol):
    def get(self, key: str) -> str | None: ...


class InMemorySettingsStore:
    def __init__(self, values: dict[str, str] | None = None):
        self._values = dict(values or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class JsonFileSettingsStore:
    """Overrides read from a JSON object file; non-string values are re-encoded."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._values: dict[str, str] = {}
        if self._path.exists():
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ConfigurationError(str(self._path), "not a JSON object")
            self._values = {
                k: v if isinstance(v, str) else _json(v) for k, v in raw.items()
            }
        else:
            logger.warning("Settings file %s not found, using defaults", self._path)

    def get(self, key: str) -> str | None:
        return self._values.get(key)


def resolve_setting(store: SettingsStoreProtocol, key: str) -> str:
    """Explicit store value > built-in default > empty string."""
    value = store.get(key)
    if value is not None:
        return value
    return DEFAULT_SETTINGS.get(key, "")


def load_hr_config(store: SettingsStoreProtocol) -> HRConfig:
    sections = {}
    for section, keys in _SECTION_KEYS.items():
        raw = {field: resolve_setting(store, key) for field, key in keys.items()}
        try:
            sections[section] = _SECTION_MODELS[section].model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0]
            field = str(first["loc"][0]) if first["loc"] else ""
            raise ConfigurationError(keys.get(field, section), first["msg"]) from e

    operator_email = resolve_setting(store, "operator_email")
    if not operator_email:
        raise ConfigurationError("operator_email")
    return HRConfig(operator_email=operator_email, **sections)


_config: HRConfig | None = None


def get_hr_config() -> HRConfig:
    if _config is None:
        return load_hr_config(InMemorySettingsStore())
    return _config


def set_hr_config(config: HRConfig) -> None:
    global _config
    _config = config
    logger.info("Business settings loaded")
