"""
Request authentication for the render API.

User-facing routes sit behind the gateway, which has already authenticated
the caller and forwards the account id. The cleanup trigger is called by a
scheduler and authenticates with a shared bearer secret.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header

from app.config import Settings
from app.dependencies import get_app_settings
from app.errors import AuthError

logger = logging.getLogger(__name__)


async def get_account_id(
    x_account_id: Optional[str] = Header(None, alias="X-Account-Id"),
) -> str:
    """
    FastAPI dependency returning the authenticated account id.

    Args:
        x_account_id: Account id forwarded by the gateway

    Raises:
        AuthError: 401 if the header is missing or blank
    """
    if not x_account_id or not x_account_id.strip():
        logger.warning("Request missing X-Account-Id header")
        raise AuthError()
    return x_account_id.strip()


async def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    FastAPI dependency verifying ``Authorization: Bearer <CRON_SECRET>``.

    The comparison runs in constant time. A missing secret on either side is
    rejected; there is no development bypass.

    Raises:
        AuthError: 401 if the secret is missing or does not match
    """
    expected_secret = settings.cron_secret
    if not expected_secret:
        logger.error("CRON_SECRET not configured, rejecting cleanup request")
        raise AuthError()

    if not authorization:
        logger.warning("Cleanup request missing Authorization header")
        raise AuthError()

    expected = f"Bearer {expected_secret}".encode("utf-8")
    if not hmac.compare_digest(authorization.encode("utf-8"), expected):
        logger.warning("Invalid cleanup secret received")
        raise AuthError()

    logger.debug("Cleanup secret validated successfully")
