import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from hrops.api.dependencies.services import get_birthday_service
from hrops.core.exceptions import ExpiredOrInvalidTokenError, HROpsError
from hrops.services.birthday_service import BirthdayReportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/birthday-report", tags=["birthday-report"])

APPROVED_MESSAGE = "操作成功！壽星名單已確認並歸檔至指定資料夾。"
REJECTED_MESSAGE = "操作已記錄。系統將不會歸檔名單。如有需要，請手動修正問題。"
INVALID_TOKEN_MESSAGE = "此審核連結已失效或已使用過，請重新產生審核信。"
INVALID_ACTION_MESSAGE = "無效的操作。"


@router.get("/review", response_class=PlainTextResponse)
async def review_birthday_report(
    action: str = "",
    token: str = "",
    service: BirthdayReportService = Depends(get_birthday_service),
) -> str:
    """Link target of the approval email buttons."""
    try:
        if action == "approve":
            result = await service.commit(token)
            logger.info("Birthday report approved: %d documents archived", len(result.documents))
            return APPROVED_MESSAGE
        if action == "reject":
            service.reject(token)
            return REJECTED_MESSAGE
    except ExpiredOrInvalidTokenError:
        return INVALID_TOKEN_MESSAGE
    except HROpsError as e:
        return f"處理您的請求時發生錯誤: {e.message}"
    return INVALID_ACTION_MESSAGE
