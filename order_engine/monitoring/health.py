"""
Health checks for readiness/liveness probes.

Checks:
- Database connectivity
- Redis connectivity (confirm replay cache)
- Stripe API reachability
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as aioredis
import stripe
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.config import get_settings
from order_engine.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the engine's external dependencies."""

    def __init__(
        self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ) -> None:
        self.settings = get_settings()
        self._session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        try:
            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

        return {"status": "healthy", "service": "database"}

    async def check_redis(self) -> Dict[str, Any]:
        redis_client: aioredis.Redis | None = None
        try:
            redis_client = aioredis.from_url(
                self.settings.redis_url, encoding="utf-8", decode_responses=True
            )
            await redis_client.ping()
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            raise HealthCheckError(f"Redis health check failed: {str(e)}")
        finally:
            if redis_client:
                await redis_client.aclose()

        return {"status": "healthy", "service": "redis"}

    async def check_stripe(self) -> Dict[str, Any]:
        try:
            stripe.api_key = self.settings.stripe_secret_key
            await asyncio.get_running_loop().run_in_executor(None, stripe.Balance.retrieve)
        except Exception as e:
            logger.error("stripe_health_check_failed", error=str(e))
            raise HealthCheckError(f"Stripe health check failed: {str(e)}")

        return {
            "status": "healthy",
            "service": "stripe",
            "test_mode": self.settings.is_test_mode,
        }

    async def _run(
        self, checks: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]]
    ) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        all_healthy = True
        for name, check in checks.items():
            try:
                results[name] = await check()
            except HealthCheckError as e:
                results[name] = {"status": "unhealthy", "service": name, "error": str(e)}
                all_healthy = False
        return {"status": "healthy" if all_healthy else "unhealthy", "checks": results}

    async def check_all(self) -> Dict[str, Any]:
        return await self._run(
            {
                "database": self.check_database,
                "redis": self.check_redis,
                "stripe": self.check_stripe,
            }
        )

    async def liveness(self) -> Dict[str, Any]:
        """Application is running; external dependencies are not consulted."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        """
        Ready to accept traffic.

        Only the database is required; the replay cache degrades gracefully
        and processor reachability is reported by /health.
        """
        return await self._run({"database": self.check_database})
