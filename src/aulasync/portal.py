"""Liveness probe against the school portal API."""

import requests

from aulasync.errors import PortalAPIError
from aulasync.log import get_logger

logger = get_logger(__name__)

SESSION_COOKIE = "PHPSESSID"


def ping_session(api_url: str, session_id: str, timeout: float = 10) -> None:
    """
    Ask the portal to keep ``session_id`` alive.

    Raises:
        PortalAPIError: If the request fails or the portal rejects the session
    """
    try:
        response = requests.post(
            api_url,
            params={"method": "session.keepAlive"},
            cookies={SESSION_COOKIE: session_id},
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise PortalAPIError(f"Error pinging portal: {e}") from e

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    status = body.get("status") or {}
    code = status.get("code", 0)
    if code != 0:
        raise PortalAPIError(
            f"Portal rejected session: {status.get('message') or code}",
            details={"status": status},
        )
    logger.info("Successfully pinged portal")
