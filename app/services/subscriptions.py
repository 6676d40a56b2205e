"""
Subscription tier lookup.

Billing lives elsewhere; the service only needs to know whether an account
is on the premium tier.
"""

import logging
from typing import Iterable, Optional, Protocol

from app.config import AccountTier, Settings, get_settings

logger = logging.getLogger(__name__)


class SubscriptionDirectory(Protocol):
    async def tier_for(self, account_id: str) -> str:
        """Return one of the AccountTier constants."""
        ...


class StaticSubscriptionDirectory:
    """Tier lookup backed by a fixed set of premium account ids."""

    def __init__(self, premium_account_ids: Optional[Iterable[str]] = None):
        self._premium = set(premium_account_ids or [])

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "StaticSubscriptionDirectory":
        settings = settings or get_settings()
        logger.info(f"Loaded {len(settings.premium_account_ids)} premium accounts")
        return cls(settings.premium_account_ids)

    def set_tier(self, account_id: str, tier: str) -> None:
        if tier == AccountTier.PREMIUM:
            self._premium.add(account_id)
        else:
            self._premium.discard(account_id)

    async def tier_for(self, account_id: str) -> str:
        if account_id in self._premium:
            return AccountTier.PREMIUM
        return AccountTier.FREE
