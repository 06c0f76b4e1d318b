"""
Security Module
===============

Authentication utilities:
- RevenueCat webhook shared-secret verification
- Supabase access token (JWT) validation
"""

import hmac
import logging
from typing import Any, Optional

from jose import JWTError, jwt

from app.config import Settings

logger = logging.getLogger(__name__)


def verify_webhook_secret(provided: Optional[str], app_settings: Settings) -> bool:
    """
    Verify the ``x-revenuecat-secret`` header of a webhook request.

    Args:
        provided: Header value, or None when absent.
        app_settings: Settings holding the auth mode and expected secret.

    Returns:
        True if the request may be processed.
    """
    if not app_settings.webhook_auth_enforced:
        return True

    expected = app_settings.REVENUECAT_WEBHOOK_SECRET
    if not expected:
        logger.warning(
            "REVENUECAT_WEBHOOK_AUTH=enforced but REVENUECAT_WEBHOOK_SECRET "
            "is not configured; rejecting webhook"
        )
        return False

    if not provided:
        return False

    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def decode_supabase_token(token: str, app_settings: Settings) -> Optional[dict[str, Any]]:
    """
    Decode and validate a Supabase access token.

    Args:
        token: JWT from the ``Authorization: Bearer`` header.
        app_settings: Settings holding the project JWT secret.

    Returns:
        Decoded payload if valid, None otherwise.
    """
    if not app_settings.SUPABASE_JWT_SECRET:
        logger.warning("SUPABASE_JWT_SECRET not configured, rejecting token")
        return None

    try:
        return jwt.decode(
            token,
            app_settings.SUPABASE_JWT_SECRET,
            algorithms=[app_settings.JWT_ALGORITHM],
            audience=app_settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError:
        return None
