"""Fortnox OAuth token endpoint activity functions.

Each function wraps a single back-channel call to the token endpoint,
authenticated with HTTP Basic client credentials.
"""

import logging
from typing import Any, Callable, Dict, Optional, Type

import httpx

from ...shared.config import PayrollExportConfig
from ...shared.errors import (
    ConfigurationMissing,
    RefreshFailed,
    TokenExchangeFailed,
    UpstreamError,
)
from ...shared.models import OAuthCredential, current_time_ms

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600
EXPIRY_SAFETY_MARGIN_MS = 60_000


def credential_from_token_response(
    payload: Dict[str, Any],
    previous_refresh_token: Optional[str] = None,
    now: Callable[[], int] = current_time_ms,
) -> OAuthCredential:
    """Build a credential, expiring it 60 seconds ahead of the server's deadline."""
    try:
        expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN)
    except (TypeError, ValueError):
        expires_in = DEFAULT_EXPIRES_IN
    return OAuthCredential(
        access_token=payload.get("access_token") or payload.get("accessToken") or "",
        refresh_token=(
            payload.get("refresh_token")
            or payload.get("refreshToken")
            or previous_refresh_token
        ),
        expires_at=now() + expires_in * 1000 - EXPIRY_SAFETY_MARGIN_MS,
    )


async def _token_request(
    form: Dict[str, str],
    settings: PayrollExportConfig,
    error_cls: Type[UpstreamError],
    action: str,
) -> Dict[str, Any]:
    if not settings.fortnox_client_id or not settings.fortnox_client_secret:
        raise ConfigurationMissing(
            name
            for name, value in (
                ("FORTNOX_CLIENT_ID", settings.fortnox_client_id),
                ("FORTNOX_CLIENT_SECRET", settings.fortnox_client_secret),
            )
            if not value
        )
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            resp = await client.post(
                settings.fortnox_token_url,
                data=form,
                auth=(settings.fortnox_client_id, settings.fortnox_client_secret),
                headers={"Accept": "application/json"},
            )
    except httpx.HTTPError as exc:
        logger.error("Fortnox %s request failed: %s", action, exc)
        raise error_cls(f"Fortnox {action} failed: {exc}") from exc

    try:
        body: Any = resp.json() if resp.content else None
    except ValueError:
        body = resp.text

    if resp.is_error:
        detail = None
        if isinstance(body, dict):
            detail = body.get("error_description") or body.get("error")
        message = detail or (body if isinstance(body, str) and body else f"HTTP {resp.status_code}")
        logger.warning("Fortnox %s rejected with HTTP %s", action, resp.status_code)
        raise error_cls(
            f"Fortnox {action} failed: {message}", status=resp.status_code, body=body
        )
    if not isinstance(body, dict):
        raise error_cls(
            f"Fortnox {action} returned an unreadable body",
            status=resp.status_code,
            body=body,
        )
    return body


async def exchange_code_for_tokens(
    code: str,
    settings: PayrollExportConfig,
    now: Callable[[], int] = current_time_ms,
) -> OAuthCredential:
    """POST grant_type=authorization_code to the token endpoint."""
    settings.require_oauth_client()
    body = await _token_request(
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.fortnox_redirect_uri,
        },
        settings,
        TokenExchangeFailed,
        "token exchange",
    )
    credential = credential_from_token_response(body, now=now)
    logger.info("Fortnox token exchange succeeded")
    return credential


async def refresh_access_token(
    refresh_token: str,
    settings: PayrollExportConfig,
    now: Callable[[], int] = current_time_ms,
) -> OAuthCredential:
    """POST grant_type=refresh_token; a rotated refresh token replaces the old one."""
    body = await _token_request(
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        settings,
        RefreshFailed,
        "token refresh",
    )
    credential = credential_from_token_response(body, previous_refresh_token=refresh_token, now=now)
    logger.info("Fortnox access token refreshed")
    return credential
