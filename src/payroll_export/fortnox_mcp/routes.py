"""HTTP routes for the Fortnox OAuth handshake and record pushes."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from ..dependencies import (
    attach_session,
    build_sync_engine,
    get_flow,
    get_session,
    get_settings,
    get_vault,
    read_body,
)
from ..shared.auth import SessionContext
from ..shared.config import PayrollExportConfig
from ..shared.errors import (
    ConfigurationMissing,
    NotAuthorized,
    OAuthHandshakeError,
    SessionStoreError,
    UpstreamError,
    UpstreamPushFailed,
    ValidationFailed,
)
from ..shared.models import AuthResult, CompensationRecord, PersonnelRecord
from .authorization import AuthorizationFlow
from .batch_sync import BatchSyncEngine, parse_bool
from .mapping import map_compensation, map_personnel
from .token_vault import TokenVault

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/fortnox/auth", tags=["fortnox-auth"])
employees_router = APIRouter(prefix="/fortnox/employees", tags=["fortnox-employees"])
compensations_router = APIRouter(prefix="/fortnox/compensations", tags=["fortnox-compensations"])

# Callback errors are redirected with a generic message; details stay in the log.
CALLBACK_MESSAGES = {
    "authorization_denied": "Authorization was not granted in Fortnox.",
    "missing_code": "Missing authorization code.",
    "invalid_state": "Authorization session expired or invalid. Please try again.",
    "token_exchange_failed": "Could not complete authorization with Fortnox.",
    "configuration_missing": "Fortnox integration is not configured.",
    "session_store_error": "Authorization could not be saved. Please try again.",
}

ITEM_STATUS = {
    ValidationFailed.code: ValidationFailed.status_code,
    NotAuthorized.code: NotAuthorized.status_code,
    UpstreamPushFailed.code: UpstreamPushFailed.status_code,
}


def frontend_redirect(settings: PayrollExportConfig, **params: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/?{urlencode(params)}"


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

@auth_router.get("/login")
async def login(
    account_type: Optional[str] = Query(default=None, alias="accountType"),
    flow: AuthorizationFlow = Depends(get_flow),
    session: SessionContext = Depends(get_session),
    settings: PayrollExportConfig = Depends(get_settings),
):
    url = flow.begin_login(account_type)
    return attach_session(RedirectResponse(url, status_code=302), session, settings)


@auth_router.get("/callback")
async def callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    flow: AuthorizationFlow = Depends(get_flow),
    session: SessionContext = Depends(get_session),
    settings: PayrollExportConfig = Depends(get_settings),
):
    try:
        await flow.complete_callback(session, code, state, error)
    except (OAuthHandshakeError, UpstreamError, ConfigurationMissing, SessionStoreError) as exc:
        logger.warning("Fortnox callback failed (%s): %s", exc.code, exc.message)
        target = frontend_redirect(
            settings,
            auth=AuthResult.ERROR.value,
            code=exc.code,
            message=CALLBACK_MESSAGES.get(exc.code, "Authorization failed. Please try again."),
        )
        return attach_session(RedirectResponse(target, status_code=302), session, settings)

    logger.info("Fortnox authorization completed")
    target = frontend_redirect(settings, auth=AuthResult.SUCCESS.value)
    return attach_session(RedirectResponse(target, status_code=302), session, settings)


@auth_router.post("/refresh")
async def refresh(
    vault: TokenVault = Depends(get_vault),
    session: SessionContext = Depends(get_session),
):
    credential = await vault.refresh(session)
    return {"refreshed": True, "expiresAt": credential.expires_at}


@auth_router.get("/status")
async def status(
    vault: TokenVault = Depends(get_vault),
    session: SessionContext = Depends(get_session),
):
    result = await vault.status(session)
    return result.model_dump(by_alias=True)


@auth_router.post("/logout")
async def logout(
    vault: TokenVault = Depends(get_vault),
    session: SessionContext = Depends(get_session),
    settings: PayrollExportConfig = Depends(get_settings),
):
    await vault.logout(session)
    response = JSONResponse({"loggedOut": True})
    response.delete_cookie(settings.session_cookie_name)
    return response


# ---------------------------------------------------------------------------
# Pushes
# ---------------------------------------------------------------------------

def _single_response(result) -> JSONResponse:
    status_code = 200
    if result.error:
        status_code = ITEM_STATUS.get(result.error_code, 500)
    return JSONResponse(result.to_response(), status_code=status_code)


def _engine_for(request: Request, session: SessionContext, body: Dict[str, Any]) -> BatchSyncEngine:
    organization = request.query_params.get("organization") or body.get("organization")
    return build_sync_engine(request, session, organization)


def _record_id(request: Request, body: Dict[str, Any]) -> Any:
    record_id = body.get("id")
    if record_id is None:
        record_id = request.query_params.get("id")
    if record_id is None or record_id == "":
        raise ValidationFailed("Provide row id", missing_fields=["id"])
    return record_id


def _batch_args(request: Request, body: Dict[str, Any]):
    limit = request.query_params.get("limit") or body.get("limit")
    dry_run = request.query_params.get("dryRun") or body.get("dryRun") or False
    return limit, parse_bool(dry_run)


def _preview_row(body: Dict[str, Any]) -> Dict[str, Any]:
    row = body.get("row")
    if not isinstance(row, dict):
        raise ValidationFailed("Provide body.row with table row", missing_fields=["row"])
    return row


@employees_router.post("/from-table")
async def push_employee(request: Request, session: SessionContext = Depends(get_session)):
    body = await read_body(request)
    engine = _engine_for(request, session, body)
    result = await engine.push_personnel(_record_id(request, body))
    return _single_response(result)


@employees_router.post("/map-preview")
async def preview_employee(request: Request, settings: PayrollExportConfig = Depends(get_settings)):
    record = PersonnelRecord.from_row(_preview_row(await read_body(request)))
    return {"employee": map_personnel(record, settings).to_payload()}


@employees_router.post("/batch")
async def push_employee_batch(request: Request, session: SessionContext = Depends(get_session)):
    body = await read_body(request)
    engine = _engine_for(request, session, body)
    limit, dry_run = _batch_args(request, body)
    result = await engine.push_personnel_batch(limit, dry_run)
    return result.to_response()


@compensations_router.post("/from-table")
async def push_compensation(request: Request, session: SessionContext = Depends(get_session)):
    body = await read_body(request)
    engine = _engine_for(request, session, body)
    result = await engine.push_compensation(_record_id(request, body))
    return _single_response(result)


@compensations_router.post("/map-preview")
async def preview_compensation(request: Request, settings: PayrollExportConfig = Depends(get_settings)):
    record = CompensationRecord.from_row(_preview_row(await read_body(request)))
    return {"transaction": map_compensation(record, settings).to_payload()}


@compensations_router.post("/batch")
async def push_compensation_batch(request: Request, session: SessionContext = Depends(get_session)):
    body = await read_body(request)
    engine = _engine_for(request, session, body)
    limit, dry_run = _batch_args(request, body)
    result = await engine.push_compensation_batch(limit, dry_run)
    return result.to_response()
