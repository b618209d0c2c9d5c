"""Transaction feed cache and the key-value table behind process counters."""
from typing import Optional

from sqlmodel import Field, SQLModel


class CachedTransaction(SQLModel, table=True):
    """
    One cached feed row per (user, provider transaction id).

    Timestamps are epoch ms so the refresh policy can compare them against
    its own clock without timezone handling.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_id: str = Field(index=True)
    user_id: int = Field(index=True)
    transaction_data: str  # raw JSON from the feed
    fetch_timestamp: int
    expiry_timestamp: int = Field(index=True)


class KeyValueEntry(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str
