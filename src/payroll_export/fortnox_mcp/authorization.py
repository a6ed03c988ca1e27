"""Fortnox OAuth authorization-code handshake."""

import logging
import secrets
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional
from urllib.parse import urlencode

from ..shared.auth import SessionContext
from ..shared.config import PayrollExportConfig
from ..shared.errors import AuthorizationDenied, InvalidState, MissingCode
from ..shared.models import OAuthCredential, current_time_ms
from .activities import oauth_api
from .token_vault import TokenVault

logger = logging.getLogger(__name__)


class PendingStateStore:
    """Single-use OAuth state tokens with a TTL and a size cap.

    Expired entries are pruned on every insert and lookup; when the cap is
    reached the oldest pending state is evicted.
    """

    def __init__(self, ttl_seconds: int, max_pending: int = 10_000, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._max = max_pending
        self._clock = clock
        self._lock = threading.Lock()
        self._states: "OrderedDict[str, float]" = OrderedDict()

    def _prune(self, now: float) -> None:
        while self._states:
            state, deadline = next(iter(self._states.items()))
            if deadline > now:
                break
            del self._states[state]

    def issue(self) -> str:
        state = secrets.token_hex(16)
        with self._lock:
            now = self._clock()
            self._prune(now)
            while len(self._states) >= self._max:
                self._states.popitem(last=False)
            self._states[state] = now + self._ttl
        return state

    def consume(self, state: Optional[str]) -> bool:
        """Remove ``state`` and report whether it was pending and unexpired."""
        if not state:
            return False
        with self._lock:
            self._prune(self._clock())
            return self._states.pop(state, None) is not None

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._states)


class AuthorizationFlow:
    """Builds the authorize redirect and completes the callback."""

    def __init__(
        self,
        settings: PayrollExportConfig,
        vault: TokenVault,
        pending: Optional[PendingStateStore] = None,
        now: Callable[[], int] = current_time_ms,
    ):
        self.settings = settings
        self.vault = vault
        self.pending = pending or PendingStateStore(
            settings.oauth_state_ttl_seconds, settings.oauth_state_max_pending
        )
        self._now = now

    def begin_login(self, account_type: Optional[str] = None) -> str:
        """Issue a state token and return the Fortnox authorize URL."""
        self.settings.require_oauth_client()
        chosen = (account_type or "").strip().lower() or self.settings.fortnox_account_type.lower()
        state = self.pending.issue()
        params = {
            "client_id": self.settings.fortnox_client_id,
            "redirect_uri": self.settings.fortnox_redirect_uri,
            "response_type": "code",
            "scope": self.settings.fortnox_scope,
            "state": state,
        }
        if chosen == "service":
            params["account_type"] = "service"
        logger.info("Issued Fortnox authorization redirect (account_type=%s)", chosen)
        return f"{self.settings.fortnox_auth_url}?{urlencode(params)}"

    async def complete_callback(
        self,
        session: SessionContext,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> OAuthCredential:
        """Validate the callback, exchange the code and store the credential."""
        if error:
            self.pending.consume(state)
            logger.warning("Fortnox authorization returned error: %s", error)
            raise AuthorizationDenied(f"Authorization was not granted: {error}")
        if not self.pending.consume(state):
            logger.warning("Rejected Fortnox callback with unknown or expired state")
            raise InvalidState()
        if not code:
            raise MissingCode()

        credential = await oauth_api.exchange_code_for_tokens(code, self.settings, now=self._now)
        await self.vault.store_credential(session, credential)
        return credential
