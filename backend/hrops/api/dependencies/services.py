"""FastAPI dependencies for the job layer; tests swap them via dependency_overrides."""

from fastapi import Depends

from hrops.models.dto.settings import HRConfig
from hrops.services.birthday_service import BirthdayReportService
from hrops.services.jobs import Collaborators, birthday_service, get_collaborators, offer_service
from hrops.services.offer_service import OfferLetterService
from hrops.services.settings_service import get_hr_config


def get_job_collaborators() -> Collaborators:
    return get_collaborators()


def get_config() -> HRConfig:
    return get_hr_config()


def get_birthday_service(
    collaborators: Collaborators = Depends(get_job_collaborators),
    config: HRConfig = Depends(get_config),
) -> BirthdayReportService:
    return birthday_service(collaborators, config)


def get_offer_service(
    collaborators: Collaborators = Depends(get_job_collaborators),
    config: HRConfig = Depends(get_config),
) -> OfferLetterService:
    return offer_service(collaborators, config)
