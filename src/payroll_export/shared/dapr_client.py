"""Dapr state API helpers.

Session credentials are kept server-side in a Dapr state store when the
service runs next to a sidecar. Failures are logged and reported through
the return value; callers decide whether a lost write matters.
"""

import logging
from typing import Any, Optional

import httpx

from .config import config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _state_url(store_name: Optional[str], key: Optional[str] = None) -> str:
    url = f"http://localhost:{config.dapr_http_port}/v1.0/state/{store_name or config.dapr_state_store}"
    return f"{url}/{key}" if key else url


async def save_state(
    key: str,
    value: Any,
    store_name: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bool:
    """Upsert one key; with ``ttl_seconds`` the sidecar expires it.

    Returns:
        False when the sidecar could not be reached or refused the write.
    """
    item: dict = {"key": key, "value": value}
    if ttl_seconds:
        item["metadata"] = {"ttlInSeconds": str(ttl_seconds)}
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(_state_url(store_name), json=[item])
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Dapr state write for '%s' failed: %s", key, exc)
        return False
    logger.debug("Dapr state written: %s", key)
    return True


async def get_state(
    key: str,
    store_name: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[Any]:
    """Stored value for ``key``; None when missing or unreadable."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(_state_url(store_name, key))
            if resp.status_code == 204 or not resp.content:
                return None
            resp.raise_for_status()
            return resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Dapr state read for '%s' failed: %s", key, exc)
        return None


async def delete_state(
    key: str,
    store_name: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bool:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.delete(_state_url(store_name, key))
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Dapr state delete for '%s' failed: %s", key, exc)
        return False
    return True
