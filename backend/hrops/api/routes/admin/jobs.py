import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder

from hrops.api.dependencies.auth import require_admin_token
from hrops.api.dependencies.services import get_config, get_job_collaborators
from hrops.core.exceptions import ConflictError, HROpsError, JobFailedError, NotFoundError
from hrops.models.dto.settings import HRConfig
from hrops.services.jobs import JOB_NAMES, Collaborators, is_job_running, local_today, run_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["admin-jobs"], dependencies=[Depends(require_admin_token)])


@router.get("")
async def list_jobs():
    return {"items": [{"name": name, "running": is_job_running(name)} for name in JOB_NAMES]}


@router.post("/{job}")
async def trigger_job(
    job: str,
    as_of: date | None = Query(None, description="Run as if today were this date"),
    send_to: str = Query("employee", pattern="^(employee|manager)$"),
    collaborators: Collaborators = Depends(get_job_collaborators),
    config: HRConfig = Depends(get_config),
):
    """Run a job now and return its result (replaces the spreadsheet menu)."""
    if job not in JOB_NAMES:
        raise NotFoundError(f"Unknown job '{job}'")
    if is_job_running(job):
        raise ConflictError(f"Job '{job}' is already running")

    logger.info("Job %s triggered manually", job)
    try:
        result = await run_job(
            job, as_of or local_today(),
            collaborators=collaborators, config=config, send_to=send_to,
        )
    except HROpsError as e:
        raise JobFailedError(e) from e
    return {"job": job, "result": jsonable_encoder(result)}
