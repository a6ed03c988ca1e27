"""Fortnox REST API activity functions.

Each function wraps a single Fortnox call, authenticated with the session's
bearer token plus the integration's client secret.
"""

import logging
from typing import Any, Dict

import httpx

from ...shared.config import PayrollExportConfig
from ...shared.errors import ConfigurationMissing, UpstreamPushFailed

logger = logging.getLogger(__name__)


def _mask(value: str, head: int, tail: int) -> str:
    if len(value) > head + tail + 2:
        return f"{value[:head]}...{value[-tail:]}"
    return "****"


def sanitized_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Copy of request headers that is safe to log."""
    safe = dict(headers)
    if "Authorization" in safe:
        token = safe["Authorization"].removeprefix("Bearer ").strip()
        safe["Authorization"] = f"Bearer {_mask(token, 6, 4)}"
    if "Client-Secret" in safe:
        safe["Client-Secret"] = _mask(safe["Client-Secret"], 3, 2)
    return safe


def _error_message(body: Any, status: int) -> str:
    if isinstance(body, dict):
        info = body.get("ErrorInformation") or {}
        message = body.get("Message") or info.get("message") or info.get("Message")
        if message:
            return str(message)
    if isinstance(body, str) and body:
        return body
    return f"HTTP {status}"


async def _post(
    path: str,
    body: Dict[str, Any],
    access_token: str,
    settings: PayrollExportConfig,
    action: str,
    debug: bool = False,
) -> Dict[str, Any]:
    if not settings.fortnox_client_secret:
        raise ConfigurationMissing(["FORTNOX_CLIENT_SECRET"])
    url = f"{settings.fortnox_api_base_url.rstrip('/')}/{path}"
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Bearer {access_token}",
        "Client-Secret": settings.fortnox_client_secret,
    }
    debug = debug or settings.fortnox_debug
    if debug:
        logger.info(
            "Fortnox request -> POST %s headers=%s body=%s",
            url, sanitized_headers(headers), body,
        )

    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            resp = await client.post(url, json=body, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Fortnox %s request failed: %s", action, exc)
        raise UpstreamPushFailed(f"Fortnox {action} failed: {exc}") from exc

    try:
        payload: Any = resp.json() if resp.content else None
    except ValueError:
        payload = resp.text

    if resp.is_error:
        if debug:
            logger.info("Fortnox response <- status=%s body=%s", resp.status_code, payload)
        raise UpstreamPushFailed(
            f"Fortnox {action} failed: {_error_message(payload, resp.status_code)}",
            status=resp.status_code,
            body=payload,
        )
    return payload if isinstance(payload, dict) else {}


async def create_employee(
    employee: Dict[str, Any],
    access_token: str,
    settings: PayrollExportConfig,
    debug: bool = False,
) -> Dict[str, Any]:
    """POST /employees to create an employee.

    Returns:
        Fortnox response; ``Employee.EmployeeId`` carries the assigned id.
    """
    logger.info(
        "Fortnox API: Creating employee %s %s",
        employee.get("FirstName"), employee.get("LastName"),
    )
    return await _post(
        "employees", {"Employee": employee}, access_token, settings, "create employee", debug
    )


async def create_salary_transaction(
    transaction: Dict[str, Any],
    access_token: str,
    settings: PayrollExportConfig,
    debug: bool = False,
) -> Dict[str, Any]:
    """POST /salarytransactions to register one salary transaction."""
    logger.info(
        "Fortnox API: Creating salary transaction %s for employee %s",
        transaction.get("SalaryCode"), transaction.get("EmployeeId"),
    )
    return await _post(
        "salarytransactions",
        {"SalaryTransaction": transaction},
        access_token,
        settings,
        "salary transaction",
        debug,
    )
