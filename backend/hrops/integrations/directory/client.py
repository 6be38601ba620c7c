import asyncio
import logging
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from hrops.core.exceptions import ExternalCallFailure
from hrops.integrations.google_auth import (
    DIRECTORY_SCOPES,
    StaticTokenProvider,
    TokenProviderProtocol,
    default_token_provider,
)

logger = logging.getLogger(__name__)

DIRECTORY_API_BASE = "https://admin.googleapis.com/admin/directory/v1"
PAGE_SIZE = 200
MAX_RETRIES = 5


@runtime_checkable
class DirectoryClientProtocol(Protocol):
    async def list_members(self, group_address: str) -> list[str]: ...
    async def insert_member(self, group_address: str, email: str) -> None: ...
    async def remove_member(self, group_address: str, email: str) -> None: ...


class GoogleDirectoryClient:
    def __init__(
        self,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_base_seconds: float = 1.0,
        token_provider: TokenProviderProtocol | None = None,
    ):
        if token_provider is None:
            token_provider = StaticTokenProvider(token) if token else default_token_provider(DIRECTORY_SCOPES)
        self._token_provider = token_provider
        self._transport = transport
        self._retry_base_seconds = retry_base_seconds

    async def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {await self._token_provider.get_token()}",
            "Accept": "application/json",
        }

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        for attempt in range(MAX_RETRIES + 1):
            headers = await self._headers()
            try:
                async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                    resp = await client.request(method, url, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                logger.error("Directory API %s %s transport error: %r", method, url, e)
                raise ExternalCallFailure("Directory", f"{method} {type(e).__name__}") from e
            if resp.status_code == 429 and attempt < MAX_RETRIES:
                wait = min(self._retry_base_seconds * 2 ** attempt, 10)
                logger.warning(
                    "Directory API rate limit hit, retrying in %.1fs (attempt %d/%d)",
                    wait, attempt + 1, MAX_RETRIES,
                )
                await asyncio.sleep(wait)
                continue
            if resp.status_code >= 400:
                logger.error(
                    "Directory API %s %s failed (%s): %s",
                    method, url, resp.status_code, resp.text,
                )
                raise ExternalCallFailure("Directory", f"{method} HTTP {resp.status_code}")
            return resp
        raise ExternalCallFailure("Directory", "rate limit retries exhausted")

    async def list_members(self, group_address: str) -> list[str]:
        """All member emails of a group, following nextPageToken."""
        url = f"{DIRECTORY_API_BASE}/groups/{quote(group_address, safe='@')}/members"
        emails: list[str] = []
        page_token: str | None = None
        while True:
            params = {"maxResults": PAGE_SIZE, "fields": "members(email),nextPageToken"}
            if page_token:
                params["pageToken"] = page_token
            resp = await self._request("GET", url, params=params)
            data = resp.json()
            emails.extend(m["email"] for m in data.get("members", []) if m.get("email"))
            page_token = data.get("nextPageToken")
            if not page_token:
                return emails

    async def insert_member(self, group_address: str, email: str) -> None:
        url = f"{DIRECTORY_API_BASE}/groups/{quote(group_address, safe='@')}/members"
        await self._request("POST", url, json={"email": email, "role": "MEMBER"})

    async def remove_member(self, group_address: str, email: str) -> None:
        url = (
            f"{DIRECTORY_API_BASE}/groups/{quote(group_address, safe='@')}"
            f"/members/{quote(email, safe='@')}"
        )
        await self._request("DELETE", url)


class FakeDirectoryClient:
    """Test fake keeping group membership in memory."""

    def __init__(
        self,
        groups: dict[str, list[str]] | None = None,
        failing: set[str] | None = None,
    ):
        self.groups = {g: list(m) for g, m in (groups or {}).items()}
        self.failing = failing or set()
        self.calls: list[tuple[str, str, str]] = []

    async def list_members(self, group_address: str) -> list[str]:
        if group_address in self.failing:
            raise ExternalCallFailure("Directory", f"cannot list {group_address}")
        return list(self.groups.get(group_address, []))

    async def insert_member(self, group_address: str, email: str) -> None:
        self.calls.append(("insert", group_address, email))
        if email in self.failing:
            raise ExternalCallFailure("Directory", f"cannot insert {email}")
        self.groups.setdefault(group_address, []).append(email)

    async def remove_member(self, group_address: str, email: str) -> None:
        self.calls.append(("remove", group_address, email))
        if email in self.failing:
            raise ExternalCallFailure("Directory", f"cannot remove {email}")
        members = self.groups.get(group_address, [])
        self.groups[group_address] = [m for m in members if m.lower() != email.lower()]
