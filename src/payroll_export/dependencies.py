"""Request-scoped dependencies shared by the HTTP routers."""

from typing import Any, Dict, Optional

from fastapi import Request, Response

from .fortnox_mcp.authorization import AuthorizationFlow
from .fortnox_mcp.batch_sync import BatchSyncEngine
from .fortnox_mcp.token_vault import TokenVault
from .shared.auth import SessionContext
from .shared.config import PayrollExportConfig
from .shared.record_store import RecordStore, build_record_store


def get_settings(request: Request) -> PayrollExportConfig:
    return request.app.state.settings


def get_vault(request: Request) -> TokenVault:
    return request.app.state.vault


def get_flow(request: Request) -> AuthorizationFlow:
    return request.app.state.flow


def get_store(request: Request) -> RecordStore:
    """Return the app's record store, building it on first use."""
    state = request.app.state
    if state.record_store is None:
        state.record_store = build_record_store(state.settings)
    return state.record_store


async def read_body(request: Request) -> Dict[str, Any]:
    """JSON body as a dict; empty or malformed bodies read as {}."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def get_session(request: Request) -> SessionContext:
    """Session named by the cookie, or a fresh one when there is none."""
    settings = get_settings(request)
    session_id = request.cookies.get(settings.session_cookie_name)
    if session_id:
        return SessionContext(session_id=session_id)
    return SessionContext.create()


def attach_session(response: Response, session: SessionContext, settings: PayrollExportConfig) -> Response:
    if session.is_new:
        response.set_cookie(
            settings.session_cookie_name,
            session.session_id,
            max_age=settings.session_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.frontend_url.startswith("https://"),
        )
    return response


def build_sync_engine(
    request: Request,
    session: SessionContext,
    organization: Optional[str] = None,
) -> BatchSyncEngine:
    settings = get_settings(request)
    vault = get_vault(request)

    async def token_provider() -> Optional[str]:
        return await vault.get_valid_access_token(session)

    return BatchSyncEngine(
        get_store(request),
        token_provider,
        settings,
        organization=organization or None,
        debug=settings.fortnox_debug,
    )
