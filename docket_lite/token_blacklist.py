"""
Token Blacklist Management
==========================

Redis-backed token blacklist for fast JWT revocation checks, mirrored in
the `token_blacklist` table so revocations survive a redis restart.
"""

import logging
import os
from datetime import datetime
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from .db.models import TokenBlacklist

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
BLACKLIST_PREFIX = "token:blacklist:"

_redis_client: Optional[Redis] = None
_redis_disabled = False


def get_redis_client() -> Optional[Redis]:
    """Get Redis client (singleton). None when redis is unreachable."""
    global _redis_client, _redis_disabled

    if _redis_disabled or os.environ.get("TOKEN_BLACKLIST_REDIS", "true").lower() == "false":
        return None

    if _redis_client is None:
        try:
            client = Redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=1)
            client.ping()
            _redis_client = client
        except RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Using database fallback.")
            _redis_disabled = True
            return None

    return _redis_client


def add_to_blacklist(jti: str, expires_at: datetime, token_type: str = "access") -> bool:
    """
    Add a token JTI to the redis blacklist.

    Returns:
        True if stored in redis, False if only the database copy will exist
    """
    redis = get_redis_client()
    if not redis:
        return False

    try:
        ttl_seconds = max(int((expires_at - datetime.utcnow()).total_seconds()), 60)
        redis.setex(f"{BLACKLIST_PREFIX}{jti}", ttl_seconds, token_type)
        return True
    except RedisError as e:
        logger.warning(f"Redis blacklist add failed: {e}")
        return False


def revoke_token(db: Session, jti: str, expires_at: datetime, token_type: str, user_id: Optional[str]) -> None:
    """Blacklist a token in redis and persist it to the database."""
    add_to_blacklist(jti, expires_at, token_type)

    existing = db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first()
    if not existing:
        db.add(TokenBlacklist(
            jti=jti,
            token_type=token_type,
            user_id=user_id,
            expires_at=expires_at,
        ))
        db.flush()


def is_blacklisted(db: Session, jti: str) -> bool:
    """Check redis first, then the database."""
    redis = get_redis_client()
    if redis:
        try:
            if redis.exists(f"{BLACKLIST_PREFIX}{jti}"):
                return True
        except RedisError as e:
            logger.warning(f"Redis blacklist check failed: {e}")

    return db.query(TokenBlacklist).filter(TokenBlacklist.jti == jti).first() is not None


def remove_expired_blacklist_entries(db: Session) -> int:
    """
    Clean up expired blacklist entries from database.

    Returns:
        Number of entries removed
    """
    return db.query(TokenBlacklist).filter(
        TokenBlacklist.expires_at < datetime.utcnow()
    ).delete()


def sync_to_redis(db: Session, max_entries: int = 10000) -> int:
    """Sync active blacklist entries from database to Redis (startup)."""
    if not get_redis_client():
        return 0

    entries = db.query(TokenBlacklist).filter(
        TokenBlacklist.expires_at > datetime.utcnow()
    ).limit(max_entries).all()

    count = 0
    for entry in entries:
        if add_to_blacklist(entry.jti, entry.expires_at, entry.token_type):
            count += 1

    logger.info(f"Synced {count} blacklist entries to Redis")
    return count
