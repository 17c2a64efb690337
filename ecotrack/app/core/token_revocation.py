"""
Token Revocation using Redis.

Bearer tokens are stateless, so a deactivated collector (or a logged-out
session) is cut off by blacklisting in Redis until the token would have
expired anyway.
"""

import logging
from ecotrack.app.core import redis_client as redis_module
from ecotrack.app.core.config import settings

logger = logging.getLogger(__name__)

# Redis key prefixes
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


def _token_ttl_seconds() -> int:
    return settings.access_token_expire_minutes * 60


async def revoke_token(token: str, user_id: int) -> bool:
    """
    Revoke a single JWT token (logout).

    Args:
        token: The JWT token string to revoke
        user_id: User ID who owns the token

    Returns:
        True if successfully revoked, False otherwise
    """
    try:
        await redis_module.redis_client.set(
            f"{TOKEN_BLACKLIST_PREFIX}{token}",
            str(user_id),
            ex=_token_ttl_seconds()
        )
        return True
    except Exception:
        logger.warning("Failed to revoke token for user %s", user_id, exc_info=True)
        return False


async def is_token_revoked(token: str) -> bool:
    """Check if a token has been revoked."""
    try:
        exists = await redis_module.redis_client.exists(f"{TOKEN_BLACKLIST_PREFIX}{token}")
        return exists > 0
    except Exception:
        # Fail open: Redis outage must not lock every collector out mid-route
        logger.warning("Token revocation check failed", exc_info=True)
        return False


async def revoke_all_user_tokens(user_id: int) -> bool:
    """
    Revoke every active token of a user.

    Called when an admin deactivates a collector.
    """
    try:
        await redis_module.redis_client.set(
            f"{USER_TOKENS_PREFIX}{user_id}:revoked",
            "1",
            ex=_token_ttl_seconds()
        )
        return True
    except Exception:
        logger.warning("Failed to revoke tokens for user %s", user_id, exc_info=True)
        return False


async def are_user_tokens_revoked(user_id: int) -> bool:
    """Check if all tokens for a user have been revoked."""
    try:
        exists = await redis_module.redis_client.exists(f"{USER_TOKENS_PREFIX}{user_id}:revoked")
        return exists > 0
    except Exception:
        logger.warning("User token revocation check failed for user %s", user_id, exc_info=True)
        return False


async def clear_user_token_revocation(user_id: int) -> bool:
    """
    Clear the revocation flag for a user.

    Called when a collector is reactivated.
    """
    try:
        await redis_module.redis_client.delete(f"{USER_TOKENS_PREFIX}{user_id}:revoked")
        return True
    except Exception:
        logger.warning("Failed to clear token revocation for user %s", user_id, exc_info=True)
        return False
