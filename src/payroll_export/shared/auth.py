"""Session-scoped credential storage for the Fortnox OAuth integration.

Credentials are only ever stored under a session id. Nothing here keeps a
process-wide token; callers pass a ``SessionContext`` explicitly.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from . import dapr_client
from .config import PayrollExportConfig
from .errors import SessionStoreError
from .models import OAuthCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Identity of one authenticated browser session."""

    session_id: str
    is_new: bool = False

    @classmethod
    def create(cls) -> "SessionContext":
        return cls(session_id=secrets.token_urlsafe(32), is_new=True)


class SessionStore(Protocol):
    async def load(self, session_id: str) -> Optional[OAuthCredential]: ...

    async def save(self, session_id: str, credential: OAuthCredential) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class InMemorySessionStore:
    """Process-local credential store with a sliding TTL per session."""

    def __init__(self, ttl_seconds: int, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, OAuthCredential]] = {}

    def _prune(self) -> None:
        now = self._clock()
        expired = [k for k, (deadline, _) in self._entries.items() if deadline <= now]
        for key in expired:
            del self._entries[key]

    async def load(self, session_id: str) -> Optional[OAuthCredential]:
        self._prune()
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        credential = entry[1]
        self._entries[session_id] = (self._clock() + self._ttl, credential)
        return credential

    async def save(self, session_id: str, credential: OAuthCredential) -> None:
        self._prune()
        self._entries[session_id] = (self._clock() + self._ttl, credential)

    async def delete(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def __len__(self) -> int:
        self._prune()
        return len(self._entries)


class DaprSessionStore:
    """Credential store backed by the Dapr state API, expiring keys by TTL."""

    def __init__(self, ttl_seconds: int, store_name: Optional[str] = None, timeout: float = 10.0):
        self._ttl = ttl_seconds
        self._store_name = store_name
        self._timeout = timeout

    @staticmethod
    def _key(session_id: str) -> str:
        return f"fortnox-session:{session_id}"

    async def load(self, session_id: str) -> Optional[OAuthCredential]:
        value = await dapr_client.get_state(
            self._key(session_id), self._store_name, timeout=self._timeout
        )
        if not value:
            return None
        return OAuthCredential.model_validate(value)

    async def save(self, session_id: str, credential: OAuthCredential) -> None:
        saved = await dapr_client.save_state(
            self._key(session_id),
            credential.model_dump(),
            self._store_name,
            ttl_seconds=self._ttl,
            timeout=self._timeout,
        )
        if not saved:
            raise SessionStoreError("Fortnox credential could not be saved to the session store")

    async def delete(self, session_id: str) -> None:
        await dapr_client.delete_state(
            self._key(session_id), self._store_name, timeout=self._timeout
        )


def build_session_store(settings: PayrollExportConfig) -> SessionStore:
    if settings.session_backend == "dapr":
        logger.info("Using Dapr state store '%s' for sessions", settings.dapr_state_store)
        return DaprSessionStore(
            settings.session_ttl_seconds,
            settings.dapr_state_store,
            timeout=settings.http_timeout_seconds,
        )
    logger.info("Using in-memory session store")
    return InMemorySessionStore(settings.session_ttl_seconds)

