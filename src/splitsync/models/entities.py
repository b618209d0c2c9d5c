"""
Syncable domain records.

Every table inherits SyncableBase (local id, immutable server id, status,
updated_at). Foreign keys are always local ids; the sync codec translates
them to and from server ids at the wire boundary.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship

from splitsync.models.sync import SyncableBase
from splitsync.timeutils import utcnow


class User(SyncableBase, table=True):
    username: str
    email: Optional[str] = None
    default_currency: str = "GBP"


class Group(SyncableBase, table=True):
    name: str
    default_currency: str = "GBP"
    description: Optional[str] = None


class GroupMember(SyncableBase, table=True):
    """Membership of a user in a group. Leaving sets removed_at; the row stays."""

    group_id: int = Field(foreign_key="group.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    removed_at: Optional[datetime] = None


class GroupDefaultSplit(SyncableBase, table=True):
    """A member's default percentage for new payments in a group."""

    __table_args__ = (UniqueConstraint("group_id", "user_id"),)

    group_id: int = Field(foreign_key="group.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    percentage: Optional[Decimal] = Field(default=None, max_digits=7, decimal_places=4)
    removed_at: Optional[datetime] = None


class Requisition(SyncableBase, table=True):
    """Open-banking consent for one institution."""

    user_id: int = Field(foreign_key="user.id", index=True)
    institution_id: str
    reference: Optional[str] = None
    status: str = "CR"  # provider status code


class BankAccount(SyncableBase, table=True):
    user_id: int = Field(foreign_key="user.id", index=True)
    requisition_id: Optional[int] = Field(default=None, foreign_key="requisition.id")
    account_name: str
    currency: str = "GBP"
    needs_reauthentication: bool = False


class Transaction(SyncableBase, table=True):
    """A bank transaction pulled from the rate-limited feed."""

    transaction_id: str = Field(unique=True, index=True)  # provider id
    user_id: int = Field(foreign_key="user.id", index=True)
    account_id: Optional[int] = Field(default=None, foreign_key="bankaccount.id")
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    currency: str
    description: Optional[str] = None
    booked_at: Optional[datetime] = None


class Payment(SyncableBase, table=True):
    group_id: int = Field(foreign_key="group.id", index=True)
    paid_by_user_id: int = Field(foreign_key="user.id")
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    currency: str
    split_mode: str = "equally"  # "equally", "unequally", "percentage"
    description: Optional[str] = None
    payment_date: datetime = Field(default_factory=utcnow)
    updated_by: Optional[int] = Field(default=None, foreign_key="user.id")

    splits: List["PaymentSplit"] = Relationship(back_populates="payment")


class PaymentSplit(SyncableBase, table=True):
    payment_id: int = Field(foreign_key="payment.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    currency: str
    percentage: Optional[Decimal] = Field(default=None, max_digits=7, decimal_places=4)
    updated_by: Optional[int] = Field(default=None, foreign_key="user.id")

    payment: Optional[Payment] = Relationship(back_populates="splits")


class CurrencyConversion(SyncableBase, table=True):
    """Append-only audit of a payment's currency change. A new conversion is a new row."""

    payment_id: int = Field(foreign_key="payment.id", index=True)
    original_currency: str
    original_amount: Decimal = Field(max_digits=14, decimal_places=2)
    final_currency: str
    final_amount: Decimal = Field(max_digits=14, decimal_places=2)
    exchange_rate: Decimal = Field(max_digits=18, decimal_places=8)
    source: str = "manual"
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
