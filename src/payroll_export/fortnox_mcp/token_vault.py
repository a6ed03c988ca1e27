"""Session-scoped Fortnox credential vault."""

import logging
from typing import Callable, Optional

from ..shared.auth import SessionContext, SessionStore
from ..shared.config import PayrollExportConfig
from ..shared.errors import NotAuthorized, RefreshFailed, SessionStoreError
from ..shared.models import AuthStatus, OAuthCredential, current_time_ms
from .activities import oauth_api

logger = logging.getLogger(__name__)


class TokenVault:
    """Stores, serves and refreshes the OAuth credential of each session."""

    def __init__(
        self,
        store: SessionStore,
        settings: PayrollExportConfig,
        now: Callable[[], int] = current_time_ms,
    ):
        self.store = store
        self.settings = settings
        self._now = now

    async def store_credential(self, session: SessionContext, credential: OAuthCredential) -> None:
        await self.store.save(session.session_id, credential)

    async def get_credential(self, session: SessionContext) -> Optional[OAuthCredential]:
        return await self.store.load(session.session_id)

    async def get_valid_access_token(self, session: SessionContext) -> Optional[str]:
        """Return a usable access token, refreshing it if needed.

        None means the session has to authorize again; it is not an error.
        """
        credential = await self.get_credential(session)
        if credential is None:
            return None
        if credential.is_valid(self._now()):
            return credential.access_token
        if not credential.refresh_token:
            return None
        try:
            refreshed = await self.refresh(session, credential)
        except RefreshFailed as exc:
            logger.warning("Implicit Fortnox token refresh failed: %s", exc.message)
            return None
        except SessionStoreError as exc:
            logger.error("Refreshed Fortnox credential was not stored: %s", exc.message)
            return None
        return refreshed.access_token or None

    async def refresh(
        self,
        session: SessionContext,
        credential: Optional[OAuthCredential] = None,
    ) -> OAuthCredential:
        """Exchange the stored refresh token for a new pair and replace the old one."""
        credential = credential or await self.get_credential(session)
        if credential is None or not credential.refresh_token:
            raise NotAuthorized("No refresh token available. Authorize first.")
        refreshed = await oauth_api.refresh_access_token(
            credential.refresh_token, self.settings, now=self._now
        )
        await self.store.save(session.session_id, refreshed)
        return refreshed

    async def status(self, session: SessionContext) -> AuthStatus:
        credential = await self.get_credential(session)
        if credential is None or not credential.access_token:
            return AuthStatus(authorized=False)
        return AuthStatus(
            authorized=True,
            expires_at=credential.expires_at,
            expires_in_ms=max(0, credential.expires_at - self._now()),
        )

    async def logout(self, session: SessionContext) -> None:
        await self.store.delete(session.session_id)
        logger.info("Fortnox credential cleared for session")
