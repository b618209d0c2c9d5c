"""
Open-banking records: requisitions, bank accounts and booked transactions.

The banking provider is authoritative for all three, so conflicts always
resolve to the server copy.
"""
import logging

from splitsync.models.entities import BankAccount, Requisition, Transaction, User
from splitsync.models.sync import SyncStatus
from splitsync.sync.batched import BatchedSyncManager
from splitsync.sync.codec import EntityCodec
from splitsync.sync.conflicts import server_wins
from splitsync.sync.managers.common import RecordSyncMixin

logger = logging.getLogger(__name__)

REQUISITION_CODEC = EntityCodec(
    Requisition,
    fields=("institution_id", "reference", "status"),
    references={"user_id": User},
)
BANK_ACCOUNT_CODEC = EntityCodec(
    BankAccount,
    fields=("account_name", "currency", "needs_reauthentication"),
    references={"user_id": User, "requisition_id": Requisition},
)
TRANSACTION_CODEC = EntityCodec(
    Transaction,
    fields=("transaction_id", "amount", "currency", "description", "booked_at"),
    references={"user_id": User, "account_id": BankAccount},
    decimals=("amount",),
    datetimes=("booked_at",),
)


class RequisitionSyncManager(RecordSyncMixin, BatchedSyncManager[Requisition, dict]):
    entity_type = "requisitions"
    sync_priority = 30
    batch_size = 20
    model = Requisition
    codec = REQUISITION_CODEC
    resource = "requisitions"

    def resolve_conflicts(self, local, server):
        return server_wins(local, server)


class BankAccountSyncManager(RecordSyncMixin, BatchedSyncManager[BankAccount, dict]):
    entity_type = "bank_accounts"
    sync_priority = 40
    batch_size = 20
    model = BankAccount
    codec = BANK_ACCOUNT_CODEC
    resource = "accounts"

    def should_sync_entity(self, entity: BankAccount) -> bool:
        return entity.sync_status != SyncStatus.SYNCED

    def resolve_conflicts(self, local, server):
        return server_wins(local, server)


class TransactionSyncManager(RecordSyncMixin, BatchedSyncManager[Transaction, dict]):
    entity_type = "transactions"
    sync_priority = 50
    batch_size = 50
    model = Transaction
    codec = TRANSACTION_CODEC
    resource = "transactions"

    def resolve_conflicts(self, local, server):
        return server_wins(local, server)
