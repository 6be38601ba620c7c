import secrets

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hrops.core.config import settings
from hrops.core.exceptions import UnauthorizedError

security = HTTPBearer(auto_error=False)


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    if not credentials:
        raise UnauthorizedError("Missing authentication token")
    if not secrets.compare_digest(
        credentials.credentials.encode(), settings.admin_api_token.encode()
    ):
        raise UnauthorizedError("Invalid token")
