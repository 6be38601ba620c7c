"""Bearer tokens for the Google Workspace REST clients.

Service-account credentials are refreshed through google-auth whenever the
cached access token is missing or about to expire; a static token is kept for
local runs and tests.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from hrops.core.config import settings
from hrops.core.exceptions import ConfigurationError, ExternalCallFailure

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)
DIRECTORY_SCOPES = ("https://www.googleapis.com/auth/admin.directory.group.member",)


@runtime_checkable
class TokenProviderProtocol(Protocol):
    async def get_token(self) -> str: ...


class StaticTokenProvider:
    def __init__(self, token: str):
        self._token = token

    async def get_token(self) -> str:
        return self._token


class ServiceAccountTokenProvider:
    def __init__(self, credentials: service_account.Credentials):
        self._credentials = credentials
        self._lock = asyncio.Lock()

    @classmethod
    def from_file(
        cls, path: str, scopes: Sequence[str], subject: str = "",
    ) -> "ServiceAccountTokenProvider":
        try:
            credentials = service_account.Credentials.from_service_account_file(
                path, scopes=list(scopes), subject=subject or None,
            )
        except (OSError, ValueError) as e:
            raise ConfigurationError("google_service_account_file", f"unreadable ({e})") from e
        return cls(credentials)

    async def get_token(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                try:
                    await asyncio.to_thread(self._credentials.refresh, Request())
                except GoogleAuthError as e:
                    raise ExternalCallFailure("Google OAuth", str(e)) from e
                logger.info("Google access token refreshed, valid until %s", self._credentials.expiry)
            return self._credentials.token


def default_token_provider(scopes: Sequence[str]) -> TokenProviderProtocol:
    if settings.google_service_account_file:
        return ServiceAccountTokenProvider.from_file(
            settings.google_service_account_file, scopes, subject=settings.google_delegated_admin,
        )
    return StaticTokenProvider(settings.google_api_token)
