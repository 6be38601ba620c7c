"""Single-use approval tokens for two-step (preview, then commit) workflows.

A token is minted when a preview is sent for review and stored with a TTL.
Approving or rejecting consumes it; afterwards, or once the TTL has elapsed,
the token is indistinguishable from one that never existed.
"""

import logging
import secrets
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from hrops.core.config import settings
from hrops.core.exceptions import ExpiredOrInvalidTokenError

logger = logging.getLogger(__name__)

_KEY_PREFIX = "approval:"
HISTORY_TTL_FACTOR = 2


class ApprovalState(str, Enum):
    NO_REQUEST = "no_request"
    PENDING_APPROVAL = "pending_approval"
    COMMITTED = "committed"
    REJECTED = "rejected"
    EXPIRED = "expired"


@runtime_checkable
class TokenStore(Protocol):
    def put(self, key: str, value: Any, ttl_seconds: float) -> None: ...
    def get(self, key: str) -> Any | None: ...
    def remove(self, key: str) -> None: ...


class InMemoryTokenStore:
    """Process-local cache with per-entry expiry against an injected clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _prune(self, now: float) -> None:
        for key in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[key]

    def put(self, key: str, value: Any, ttl_seconds: float) -> None:
        now = self._clock()
        self._prune(now)
        self._entries[key] = (now + ttl_seconds, value)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)


class ApprovalWorkflow:
    def __init__(
        self,
        store: TokenStore,
        ttl_seconds: float | None = None,
        token_factory: Callable[[], str] = lambda: secrets.token_urlsafe(32),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._ttl = settings.approval_token_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._token_factory = token_factory
        self._clock = clock
        # token -> (forget_at, outcome once consumed)
        self._history: dict[str, tuple[float, ApprovalState | None]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def request(self, payload: dict[str, Any]) -> str:
        """Mint a token for a pending request (NO_REQUEST -> PENDING_APPROVAL)."""
        token = self._token_factory()
        self._store.put(_KEY_PREFIX + token, payload, self._ttl)
        self._prune_history()
        self._history[token] = (self._clock() + self._ttl * HISTORY_TTL_FACTOR, None)
        logger.info("Approval requested, token expires in %ss", self._ttl)
        return token

    @property
    def tracked_tokens(self) -> int:
        return len(self._history)

    def _prune_history(self) -> None:
        now = self._clock()
        for token in [t for t, (forget_at, _) in self._history.items() if now >= forget_at]:
            del self._history[token]

    def state_of(self, token: str) -> ApprovalState:
        if self._store.get(_KEY_PREFIX + token) is not None:
            return ApprovalState.PENDING_APPROVAL
        self._prune_history()
        if token not in self._history:
            return ApprovalState.NO_REQUEST
        return self._history[token][1] or ApprovalState.EXPIRED

    def _consume(self, token: str, outcome: ApprovalState) -> dict[str, Any]:
        if not token:
            raise ExpiredOrInvalidTokenError()
        key = _KEY_PREFIX + token
        payload = self._store.get(key)
        if payload is None:
            logger.warning("Rejected unknown, consumed or expired approval token")
            raise ExpiredOrInvalidTokenError()
        self._store.remove(key)
        forget_at = self._history.get(token, (self._clock() + self._ttl, None))[0]
        self._history[token] = (forget_at, outcome)
        return payload

    def approve(self, token: str) -> dict[str, Any]:
        """PENDING_APPROVAL -> COMMITTED. Returns the payload stored with the token."""
        payload = self._consume(token, ApprovalState.COMMITTED)
        logger.info("Approval token consumed (approved)")
        return payload

    def reject(self, token: str) -> dict[str, Any]:
        """PENDING_APPROVAL -> REJECTED."""
        payload = self._consume(token, ApprovalState.REJECTED)
        logger.info("Approval token consumed (rejected)")
        return payload
