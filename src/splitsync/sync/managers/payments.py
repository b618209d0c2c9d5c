"""
Payment sync: a payment and its splits travel together.

Push sends the payment first (so splits can reference its server id) and
then every unsynced split under /payments/{id}/splits. A payment counts as
a local change when it or any of its splits is unsynced. Pull receives
payments with their splits nested under "splits".
"""
import logging
from typing import Any, Dict, List

from sqlalchemy import delete
from sqlmodel import Session, col, select

from splitsync.models.entities import Group, Payment, PaymentSplit, User
from splitsync.models.sync import UNSYNCED_STATUSES, SyncStatus
from splitsync.sync.batched import BatchedSyncManager
from splitsync.sync.codec import EntityCodec
from splitsync.sync.conflicts import last_writer_wins
from splitsync.sync.managers.common import RecordSyncMixin

logger = logging.getLogger(__name__)

PAYMENT_CODEC = EntityCodec(
    Payment,
    fields=("amount", "currency", "split_mode", "description", "payment_date"),
    references={"group_id": Group, "paid_by_user_id": User, "updated_by": User},
    decimals=("amount",),
    datetimes=("payment_date",),
)
SPLIT_CODEC = EntityCodec(
    PaymentSplit,
    fields=("amount", "currency", "percentage"),
    references={"payment_id": Payment, "user_id": User, "updated_by": User},
    decimals=("amount", "percentage"),
)


class PaymentSyncManager(RecordSyncMixin, BatchedSyncManager[Payment, dict]):
    entity_type = "payments"
    sync_priority = 60
    batch_size = 20
    model = Payment
    codec = PAYMENT_CODEC
    resource = "payments"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._dirty_splits: Dict[int, List[PaymentSplit]] = {}

    def resolve_conflicts(self, local, server):
        return last_writer_wins(local, server)

    # ─── Local changes ────────────────────────────────────────────────────────

    async def get_local_changes(self) -> List[Payment]:
        splits = self.load_unsynced(PaymentSplit)
        self._dirty_splits = {}
        for split in splits:
            self._dirty_splits.setdefault(split.payment_id, []).append(split)

        payments = {p.id: p for p in self.load_unsynced()}
        missing = set(self._dirty_splits) - set(payments)
        if missing:
            with Session(self.engine) as s:
                for payment in s.exec(select(Payment).where(col(Payment.id).in_(missing))).all():
                    payments[payment.id] = payment
        return [payments[pid] for pid in sorted(payments)]

    def entity_sync_status(self, entity: Payment) -> SyncStatus:
        if entity.sync_status == SyncStatus.SYNCED and self._dirty_splits.get(entity.id):
            return SyncStatus.PENDING_SYNC
        return entity.sync_status

    # ─── Push ─────────────────────────────────────────────────────────────────

    async def sync_to_server(self, entity: Payment):
        if entity.sync_status in UNSYNCED_STATUSES:
            row = await self.push_record(entity)
            if entity.sync_status == SyncStatus.LOCALLY_DELETED or row is None:
                return row
        else:
            row = entity

        with Session(self.engine) as s:
            fresh = s.get(Payment, entity.id)
            payment_server_id = fresh.server_id if fresh else None
        if payment_server_id is None:
            return row

        for split in self._dirty_splits.get(entity.id, []):
            try:
                await self._push_split(payment_server_id, split)
            except Exception:
                self.mark_row_failed(split, PaymentSplit)
                raise
        return row

    async def _push_split(self, payment_server_id: int, split: PaymentSplit) -> None:
        with Session(self.engine) as s:
            row = s.get(PaymentSplit, split.id)
            if row is None:
                return
            status, server_id, touched = row.sync_status, row.server_id, row.updated_at
            payload = None
            if status != SyncStatus.LOCALLY_DELETED:
                payload = SPLIT_CODEC.to_payload(s, row)

        if status == SyncStatus.LOCALLY_DELETED:
            if server_id is not None:
                await self.remote.delete_split(payment_server_id, server_id)
            self.purge(split.id, PaymentSplit)
            return

        if server_id is None:
            response = await self.remote.create_split(payment_server_id, payload)
        else:
            response = await self.remote.update_split(payment_server_id, server_id, payload)
        self.confirm_push(split.id, response, touched, model=PaymentSplit)

    def purge(self, local_id: int, model=None) -> None:
        if model is None or model is Payment:
            self._drop_splits(local_id)
        super().purge(local_id, model)

    def _drop_splits(self, payment_id: int) -> None:
        with Session(self.engine) as s:
            s.execute(delete(PaymentSplit).where(PaymentSplit.payment_id == payment_id))
            s.commit()

    def drop_local(self, session: Session, row) -> None:
        if isinstance(row, Payment):
            session.execute(delete(PaymentSplit).where(PaymentSplit.payment_id == row.id))
        super().drop_local(session, row)

    # ─── Pull ─────────────────────────────────────────────────────────────────

    async def apply_server_change(self, server_entity: Dict[str, Any]):
        data = dict(server_entity)
        nested = data.pop("splits", None) or []

        payment = self.apply_server_record(data, self._pull_since)
        if payment is None:
            return None

        for split in nested:
            split = dict(split)
            split.setdefault("payment_id", data["id"])
            self.apply_server_record(split, self._pull_since, model=PaymentSplit, codec=SPLIT_CODEC)
        return payment
