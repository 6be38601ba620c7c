from datetime import date
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

EmployeeType = Literal["正職", "非正職"]


class OfferRequest(BaseModel):
    company: str = Field(min_length=1, max_length=50)
    employee_type: EmployeeType = "正職"
    employee_name: str = Field(min_length=1, max_length=100)
    department: str = Field(default="", max_length=100)
    job_title: str = Field(default="", max_length=100)
    supervisor: str = Field(min_length=1, max_length=200, description='"Name" or "Name (nickname)"')
    candidate_email: EmailStr = Field(max_length=320)
    cc_emails: list[EmailStr] = Field(default_factory=list, max_length=20)
    onboarding_date: date
    salary: int = Field(gt=0)
    other_salary_info: str = Field(default="", max_length=500)


class OfferResult(BaseModel):
    employee_id: str
    document_url: str
    supervisor_email: str = ""
    message: str
