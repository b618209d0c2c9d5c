"""Currency conversion audit rows. Append-only: pushed once, never updated."""
from splitsync.models.entities import CurrencyConversion, Payment, User
from splitsync.sync.batched import BatchedSyncManager
from splitsync.sync.codec import EntityCodec
from splitsync.sync.conflicts import local_wins
from splitsync.sync.managers.common import RecordSyncMixin

CONVERSION_CODEC = EntityCodec(
    CurrencyConversion,
    fields=(
        "original_currency",
        "original_amount",
        "final_currency",
        "final_amount",
        "exchange_rate",
        "source",
        "created_at",
    ),
    references={"payment_id": Payment, "created_by": User},
    decimals=("original_amount", "final_amount", "exchange_rate"),
    datetimes=("created_at",),
)


class CurrencyConversionSyncManager(
    RecordSyncMixin, BatchedSyncManager[CurrencyConversion, dict]
):
    entity_type = "currency_conversions"
    sync_priority = 70
    batch_size = 50
    model = CurrencyConversion
    codec = CONVERSION_CODEC
    resource = "currency-conversions"

    def resolve_conflicts(self, local, server):
        return local_wins(local, server)

    async def sync_to_server(self, entity: CurrencyConversion):
        if entity.server_id is not None:
            # already on the server; only the local status is stale
            return self.confirm_push(entity.id, {"id": entity.server_id}, entity.updated_at)
        return await self.push_record(entity)
