"""
TransactionFeedService: quota-aware fetches from the bank transaction feed.

Every network call goes through the RefreshPolicy first. Automatic fetches
that are not admitted fall back to the cache; an explicit refresh that is
not admitted raises RefreshDeniedError with the current rate-limit info.
"""
import logging
from typing import Any, Dict, List

from sqlmodel import Session

from splitsync.errors import RefreshDeniedError
from splitsync.feed.cache import TransactionCache
from splitsync.feed.refresh_policy import RefreshPolicy
from splitsync.models.entities import BankAccount, User
from splitsync.sync.codec import server_id_for

logger = logging.getLogger(__name__)


class TransactionFeedService:
    def __init__(self, engine, remote, policy: RefreshPolicy, cache: TransactionCache):
        self.engine = engine
        self.remote = remote
        self.policy = policy
        self.cache = cache

    async def fetch_and_cache(self, user_id: int, force: bool = False) -> List[Dict[str, Any]]:
        """
        Refresh the user's recent transactions when the policy admits it.

        Args:
            user_id: Local user id.
            force: Explicit user request; bypasses cooldown and priority but
                not the daily quota.

        Returns:
            Fresh transactions if a call was made, otherwise the cached ones.

        Raises:
            RefreshDeniedError: force=True and the quota is spent.
        """
        if force:
            if not self.policy.force_refresh(user_id):
                info = self.policy.rate_limit_info(user_id)
                raise RefreshDeniedError(
                    f"Daily transaction refresh limit reached ({info.max_calls} calls)",
                    rate_limit=info,
                )
        elif not self.policy.should_refresh_cache(user_id):
            logger.debug("User %s: serving transactions from cache", user_id)
            return self.cache.cached_transactions(user_id)

        with Session(self.engine) as s:
            user_server_id = server_id_for(s, User, user_id)

        transactions = await self.remote.fetch_transactions(user_server_id)
        self.policy.record_feed_call(user_id)
        self.cache.cache_transactions(user_id, transactions)
        logger.info("User %s: fetched %d transactions", user_id, len(transactions))
        return transactions

    async def fetch_account_transactions(self, user_id: int, account_id: int) -> List[Dict[str, Any]]:
        """Fetch one account's transactions (e.g. right after linking). Quota-exempt."""
        if not self.policy.is_account_specific_refresh_allowed(user_id):
            raise RefreshDeniedError(
                "Transaction feed is cooling down",
                rate_limit=self.policy.rate_limit_info(user_id),
            )

        with Session(self.engine) as s:
            account_server_id = server_id_for(s, BankAccount, account_id)

        transactions = await self.remote.fetch_account_transactions(account_server_id)
        self.policy.record_feed_call(user_id, account_specific=True)
        self.cache.cache_transactions(user_id, transactions)
        return transactions

    def cached_transactions(self, user_id: int) -> List[Dict[str, Any]]:
        return self.cache.cached_transactions(user_id)

    def clear_expired_cache(self) -> int:
        removed = self.cache.clear_expired()
        logger.info("Removed %d expired cached transactions", removed)
        return removed


def build_feed_service(engine, remote, store, settings=None) -> TransactionFeedService:
    cache = TransactionCache(engine, settings=settings)
    policy = RefreshPolicy(store, last_fetch=cache.last_fetch_timestamp, settings=settings)
    return TransactionFeedService(engine, remote, policy, cache)
