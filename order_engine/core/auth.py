"""
Permission Guard.

The authorization context is resolved once per request from claims supplied
by the authenticating gateway and threaded explicitly into every operation.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.database.models import ProviderOperator

from .errors import InvalidArgument, PermissionDenied, PreconditionFailed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Verified actor identity and its provider affiliation claim."""

    actor_id: str
    provider_id: Optional[str] = None


class PermissionGuard:
    """Resolves provider affiliation and rejects out-of-scope operations."""

    @staticmethod
    def require_authenticated(auth: Optional[AuthContext]) -> AuthContext:
        if auth is None or not auth.actor_id:
            raise PreconditionFailed("The function must be called while authenticated.")
        return auth

    @staticmethod
    def resolve_provider_id(auth: AuthContext) -> str:
        if not auth.provider_id:
            raise InvalidArgument("Auth does not maintain a providerID.")
        return auth.provider_id

    @staticmethod
    def authorize_order(auth: AuthContext, provided_by: str, purchased_by: str) -> None:
        """Allow the owning provider or the order's buyer."""
        if auth.provider_id == provided_by or auth.actor_id == purchased_by:
            return
        logger.warning(
            "order_access_denied",
            actor_id=auth.actor_id,
            provided_by=provided_by,
        )
        raise PermissionDenied("You do not have permission to modify this order.")

    @staticmethod
    async def check_permission(
        db: AsyncSession,
        auth: AuthContext,
        provider_id: str,
        required: Iterable[str] = ("write", "owner"),
    ) -> None:
        """
        Require the actor to act for `provider_id` and hold one of `required`
        on its operator roster.
        """
        if auth.provider_id != provider_id:
            raise PermissionDenied("You do not have permission to publish.")

        stmt = select(ProviderOperator).where(
            ProviderOperator.provider_id == provider_id,
            ProviderOperator.actor_id == auth.actor_id,
        )
        operator = (await db.execute(stmt)).scalar_one_or_none()
        if operator is None or not set(operator.permissions) & set(required):
            logger.warning(
                "provider_permission_denied",
                actor_id=auth.actor_id,
                provider_id=provider_id,
            )
            raise PermissionDenied("You do not have permission to publish.")
