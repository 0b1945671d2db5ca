"""Payout account linking."""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.database.connection import get_session_factory
from order_engine.database.models import Account
from order_engine.integrations.stripe_client import StripeClient, StripeError

from .auth import AuthContext, PermissionGuard
from .errors import InvalidArgument, PermissionDenied

logger = structlog.get_logger(__name__)


class PayoutAccountService:
    """Attaches external bank accounts or cards to an actor's connected account."""

    def __init__(
        self,
        stripe_client: Optional[StripeClient] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self._stripe_client = stripe_client
        self._session_factory = session_factory
        self.guard = PermissionGuard()

    @property
    def stripe_client(self) -> StripeClient:
        if self._stripe_client is None:
            self._stripe_client = StripeClient()
        return self._stripe_client

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def link_payout_account(
        self,
        auth: Optional[AuthContext],
        actor_id: str,
        account_details: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Link an external account for `actor_id`.

        Processor errors carrying a raw error body are returned as
        `{"error": raw}`; anything else propagates.
        """
        auth = self.guard.require_authenticated(auth)
        if auth.actor_id != actor_id:
            raise PermissionDenied("You can only link payout accounts for yourself.")
        if not account_details or not account_details.get("external_account"):
            raise InvalidArgument("This request does not include an external_account.")

        async with self.session_factory() as db:
            account = await db.get(Account, actor_id)
            account_id = account.stripe_account_id if account else None
        if not account_id:
            raise InvalidArgument("Auth does not maintain a accountID.")

        try:
            result = await self.stripe_client.create_external_account(account_id, account_details)
        except StripeError as e:
            logger.error("link_payout_account_failed", actor_id=actor_id, error=str(e))
            if e.raw:
                return {"error": e.raw}
            raise

        logger.info("payout_account_linked", actor_id=actor_id, external_account_id=result.get("id"))
        return {"result": result}
