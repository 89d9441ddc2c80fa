"""Shared httpx error mapping for capability clients."""

import logging

import httpx

from assure.errors.exceptions import AssureError, TransientError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 409, 429}


async def post_json(client: httpx.AsyncClient, url: str, payload: dict, headers: dict, capability: str) -> dict:
    """POST ``payload`` and return the decoded JSON body.

    Timeouts, transport errors, 408/409/429 and 5xx become TransientError so the
    job queue retries them with backoff. Other 4xx responses raise
    CAPABILITY_REJECTED.
    """
    try:
        response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as exc:
        raise TransientError(f"{capability} request timed out", details={"url": url}) from exc
    except httpx.TransportError as exc:
        raise TransientError(f"{capability} connection failed: {exc}", details={"url": url}) from exc

    if response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS:
        raise TransientError(
            f"{capability} returned HTTP {response.status_code}",
            details={"url": url, "status": response.status_code},
        )
    if response.status_code >= 400:
        logger.error("%s rejected request (HTTP %s): %s", capability, response.status_code, response.text[:500])
        raise AssureError(
            "CAPABILITY_REJECTED",
            f"{capability} returned HTTP {response.status_code}",
            details={"url": url, "status": response.status_code},
            status_code=502,
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise TransientError(f"{capability} returned a non-JSON body") from exc
    if not isinstance(body, dict):
        raise TransientError(f"{capability} returned a JSON {type(body).__name__}, expected an object")
    return body
