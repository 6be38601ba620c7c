import logging

from fastapi import APIRouter, Depends, HTTPException

from hrops.api.dependencies.auth import require_admin_token
from hrops.api.dependencies.services import get_offer_service
from hrops.core.exceptions import HROpsError, InvalidRequestError, JobFailedError, MissingSerialRuleError
from hrops.models.dto.offer import OfferRequest, OfferResult
from hrops.services.jobs import local_today
from hrops.services.offer_service import OfferLetterService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offers", tags=["admin-offers"], dependencies=[Depends(require_admin_token)])


@router.post("", response_model=OfferResult, status_code=201)
async def create_offer(
    body: OfferRequest,
    service: OfferLetterService = Depends(get_offer_service),
):
    """Issue an employee ID and send the offer letter (replaces the recruitment form)."""
    try:
        return await service.submit(body, local_today())
    except (InvalidRequestError, MissingSerialRuleError) as e:
        raise HTTPException(
            status_code=422,
            detail={"kind": e.kind.value, "message": e.message},
        ) from e
    except HROpsError as e:
        logger.exception("Offer for %s failed", body.employee_name)
        raise JobFailedError(e) from e
