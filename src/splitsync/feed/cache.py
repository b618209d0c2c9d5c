"""Short-lived cache of raw feed transactions, one row per (user, transaction id)."""
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func
from sqlmodel import Session, col, select

from splitsync.config import Settings, get_settings
from splitsync.models.feed import CachedTransaction
from splitsync.timeutils import HOUR_MS, Clock, now_ms

logger = logging.getLogger(__name__)


def _transaction_key(data: Dict[str, Any]) -> str:
    return str(data.get("transaction_id") or data.get("id"))


class TransactionCache:
    def __init__(self, engine, settings: Optional[Settings] = None, clock: Clock = now_ms):
        self.engine = engine
        self.settings = settings or get_settings()
        self._clock = clock

    @property
    def lifetime_ms(self) -> int:
        return self.settings.feed_cache_duration_hours * HOUR_MS

    def cache_transactions(self, user_id: int, transactions: List[Dict[str, Any]]) -> int:
        """Replace the cached copy of each given transaction. Returns rows written."""
        now = self._clock()
        keys = [_transaction_key(t) for t in transactions]
        with Session(self.engine) as s:
            if keys:
                s.execute(
                    delete(CachedTransaction).where(
                        CachedTransaction.user_id == user_id,
                        col(CachedTransaction.transaction_id).in_(keys),
                    )
                )
            for key, data in zip(keys, transactions):
                s.add(
                    CachedTransaction(
                        transaction_id=key,
                        user_id=user_id,
                        transaction_data=json.dumps(data, default=str),
                        fetch_timestamp=now,
                        expiry_timestamp=now + self.lifetime_ms,
                    )
                )
            s.commit()
        logger.debug("Cached %d transactions for user %s", len(transactions), user_id)
        return len(transactions)

    def last_fetch_timestamp(self, user_id: int) -> Optional[int]:
        with Session(self.engine) as s:
            return s.exec(
                select(func.max(CachedTransaction.fetch_timestamp)).where(
                    CachedTransaction.user_id == user_id
                )
            ).one()

    def cached_transactions(self, user_id: int) -> List[Dict[str, Any]]:
        """Unexpired cached transactions, newest fetch first."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(CachedTransaction)
                .where(
                    CachedTransaction.user_id == user_id,
                    CachedTransaction.expiry_timestamp > self._clock(),
                )
                .order_by(col(CachedTransaction.fetch_timestamp).desc(), CachedTransaction.id)
            ).all()
            return [json.loads(row.transaction_data) for row in rows]

    def clear_expired(self) -> int:
        with Session(self.engine) as s:
            result = s.execute(
                delete(CachedTransaction).where(CachedTransaction.expiry_timestamp <= self._clock())
            )
            s.commit()
            return result.rowcount

    def clear_user(self, user_id: int) -> None:
        with Session(self.engine) as s:
            s.execute(delete(CachedTransaction).where(CachedTransaction.user_id == user_id))
            s.commit()
