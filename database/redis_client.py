"""
Redis client for the token revocation list.
Each revoked token id is a key whose TTL is the token's remaining validity,
so entries clean themselves up once the token could no longer be used anyway.
"""

import os
import json
from datetime import datetime, timezone
from typing import Optional

import redis

from database.repositories import RevocationList

# ─── Config ────────────────────────────────────────────────────────────────────

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


# ─── Key helpers ───────────────────────────────────────────────────────────────

def _revoked_key(token_id: str) -> str:
    return f"revoked_token:{token_id}"


def _ttl_seconds(expires_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    # Redis rejects EX 0; keep already-expired tokens for a second
    return max(1, int((expires_at - now).total_seconds()))


# ─── Revocation list ───────────────────────────────────────────────────────────

class RedisRevocationList(RevocationList):
    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client or get_redis()

    def revoke(self, token_id, user_id, token_type, expires_at, reason) -> bool:
        """SET NX so two concurrent revocations of the same token have exactly one winner."""
        payload = json.dumps({"user_id": user_id, "type": token_type, "reason": reason})
        created = self.client.set(
            _revoked_key(token_id),
            payload,
            nx=True,
            ex=_ttl_seconds(expires_at),
        )
        return bool(created)

    def is_revoked(self, token_id: str) -> bool:
        return self.client.exists(_revoked_key(token_id)) > 0
