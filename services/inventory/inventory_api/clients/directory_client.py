"""
HTTP client for the Device Tracking user directory.

The inventory service does not own user accounts; logins are verified against
the shared directory's user records.
"""
import logging
from typing import Optional
import httpx

from .. import config
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "user directory"


async def get_user(username: str) -> Optional[dict]:
    """
    Fetch a user record from the directory.

    Args:
        username: Login name

    Returns:
        User data (user_id, username, password_hash, roles, is_active, is_locked_out),
        or None if the user does not exist

    Raises:
        ExternalServiceError: If the directory is unreachable or answers with an error
    """
    url = f"{config.DIRECTORY_SERVICE_URL}/users/{username}"
    try:
        async with httpx.AsyncClient(timeout=config.DIRECTORY_TIMEOUT) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        logger.error(f"Directory request failed for {username}: {e}")
        raise ExternalServiceError(SERVICE_NAME, str(e))

    if response.status_code == 404:
        return None
    if response.status_code >= 400:
        raise ExternalServiceError(SERVICE_NAME, f"HTTP {response.status_code}")
    return response.json()
