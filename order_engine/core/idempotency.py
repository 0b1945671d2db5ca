"""
Confirm response replay cache.

A successful confirm response is cached in Redis under the owning provider,
the order id and the payment reference, so an identical retry from the same
provider returns the identical `{result}` without reaching the processor or
the ledger. The cache is best effort: when Redis is unavailable the ledger's
status check still turns the retry into a `Conflict` no-op.
"""
import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from order_engine.config import get_settings

logger = structlog.get_logger(__name__)


class IdempotencyManager:
    """Caches operation responses keyed by their idempotency key."""

    def __init__(self, redis_client: Optional[aioredis.Redis] = None):
        self.settings = get_settings()
        self.redis_client = redis_client

    def _ensure_redis(self) -> aioredis.Redis:
        if self.redis_client is None:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self.redis_client

    @staticmethod
    def confirm_key(provider_id: str, order_id: str, payment_intent_id: str) -> str:
        """Format: confirm:{provider_id}:{order_id}:{payment_intent_id}"""
        return f"confirm:{provider_id}:{order_id}:{payment_intent_id}"

    async def get_response(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        """
        Return the cached response for a key, if any.

        Args:
            idempotency_key: The idempotency key to check

        Returns:
            Optional[Dict[str, Any]]: Cached response envelope or None
        """
        try:
            cached = await self._ensure_redis().get(f"idempotency:{idempotency_key}")
        except RedisError as e:
            logger.warning("idempotency_cache_error", error=str(e), idempotency_key=idempotency_key)
            return None

        if cached:
            logger.info("idempotency_cache_hit", idempotency_key=idempotency_key)
            return json.loads(cached)
        return None

    async def store_response(self, idempotency_key: str, response: Dict[str, Any]) -> None:
        try:
            await self._ensure_redis().setex(
                f"idempotency:{idempotency_key}",
                self.settings.idempotency_cache_ttl,
                json.dumps(response),
            )
        except RedisError as e:
            logger.warning(
                "idempotency_cache_store_error",
                error=str(e),
                idempotency_key=idempotency_key,
            )
            return
        logger.info("idempotency_response_cached", idempotency_key=idempotency_key)

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
