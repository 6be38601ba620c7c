import os

from fastapi import APIRouter

from hrops.core.config import settings
from hrops.services.scheduler import get_scheduler_health

router = APIRouter(tags=["health"])

APP_VERSION = os.environ.get("APP_VERSION", "dev")


def _configured(value: str) -> dict:
    return {"status": "configured" if value else "not_configured"}


@router.get("/health")
async def health_check():
    checks = {
        "smtp": _configured(settings.smtp_host),
        "google": _configured(settings.google_service_account_file or settings.google_api_token),
        "slack": _configured(settings.slack_webhook_url),
        "scheduler": get_scheduler_health() if settings.scheduler_enabled else {"status": "disabled"},
    }
    overall = "unhealthy" if checks["scheduler"]["status"] in ("stopped", "stale") else "healthy"
    return {"status": overall, "version": APP_VERSION, "checks": checks}
