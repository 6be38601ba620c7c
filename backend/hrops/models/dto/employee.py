from datetime import date
from typing import Any

from pydantic import BaseModel, Field

# Raw cell value as delivered by the roster source. Dates stay unparsed so the
# rules engine can report InvalidDate per record instead of failing the read.
CellValue = Any


class EmployeeRecord(BaseModel):
    employee_id: str = ""
    name: str = ""
    department: str = ""
    department_code: str = ""
    department_name: str = ""
    company: str = ""
    date_of_birth: CellValue = None
    hire_date: CellValue = None
    resignation_date: CellValue = None
    insurance_unit: str = ""
    email: str = ""
    nickname: str = ""
    job_title: str = ""
    extension: str = ""
    telegram: str = ""
    mobile: str = ""
    id_number: str = ""
    salary: CellValue = None
    insurance_plan: str = ""

    model_config = {"frozen": True}


class ProbationRecord(BaseModel):
    row_number: int
    employee_name: str = ""
    employee_id: str = ""
    department: str = ""
    manager_name: str = ""
    manager_email: str = ""
    employee_email: str = ""
    probation_start_date: CellValue = None
    probation_end_date: CellValue = None
    sick_leave_hours: CellValue = None
    personal_leave_hours: CellValue = None
    row: dict[str, Any] = Field(default_factory=dict)


class BirthdayEntry(BaseModel):
    department_code: str
    department_name: str
    employee_id: str
    employee_name: str
    date_of_birth: date
    hire_date: date
    age: int
    seniority_months: int
    seniority_label: str
