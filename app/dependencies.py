"""
Common Dependencies
===================

Shared dependencies used across the application.
"""

import logging
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.errors import AuthenticationError, ErrorCodes
from app.core.security import decode_supabase_token
from app.db.session import get_db
from app.services.subscription_store import (
    SqlAlchemySubscriptionStore,
    SubscriptionStore,
)

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

# Settings dependency (overridable in tests)
AppSettings = Annotated[Settings, Depends(get_settings)]

# Security scheme for Supabase access tokens
security = HTTPBearer(auto_error=False)


def get_subscription_store(db: DBSession) -> SubscriptionStore:
    """Subscription store bound to the request's database session."""
    return SqlAlchemySubscriptionStore(db)


SubscriptionStoreDep = Annotated[SubscriptionStore, Depends(get_subscription_store)]


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    app_settings: AppSettings,
) -> str:
    """
    Get the authenticated user's id from a Supabase access token.

    Raises 401 if not authenticated or token is invalid.
    """
    if credentials is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_NOT_AUTHENTICATED,
            message="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_supabase_token(credentials.credentials, app_settings)
    user_id = payload.get("sub") if payload else None

    if not user_id:
        logger.info("Rejected invalid or expired access token")
        raise AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_TOKEN,
            message="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user_id


# Type alias for authenticated user dependency
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
