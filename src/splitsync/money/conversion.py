"""
CurrencyConversionCoordinator: convert a payment and its splits to another currency.

Flow:
  1. converted total = round_half_up(|amount| x rate) with the sign of amount
  2. Load the payment and its live splits
  3. Re-split the converted total with the payment's split mode
  4. Verify the splits (a failure aborts before anything is written)
  5. One session, one commit: insert the conversion audit row, update the
     payment, update every split
  6. Best effort: push payment, conversion and splits to the server. On
     success the rows are marked SYNCED; on failure they stay PENDING_SYNC
     and the regular sync passes pick them up.
"""
import logging
from decimal import Decimal
from typing import List

from sqlmodel import Session, col, select

from splitsync.errors import EntityNotFoundError
from splitsync.models.entities import CurrencyConversion, Payment, PaymentSplit
from splitsync.models.sync import SyncStatus, assign_server_id, mark_dirty, mark_status
from splitsync.money.amounts import as_decimal, round_half_up, sign
from splitsync.money.split_calculator import SplitShare, calculate_splits
from splitsync.result import Failure, Ok, Result
from splitsync.sync.managers.conversions import CONVERSION_CODEC
from splitsync.sync.managers.payments import PAYMENT_CODEC, SPLIT_CODEC
from splitsync.timeutils import utcnow

logger = logging.getLogger(__name__)


def convert_amount(amount: Decimal, exchange_rate: Decimal) -> Decimal:
    amount = as_decimal(amount)
    return round_half_up(abs(amount) * as_decimal(exchange_rate)) * sign(amount)


def _live_splits(session: Session, payment_id: int) -> List[PaymentSplit]:
    return list(
        session.exec(
            select(PaymentSplit)
            .where(
                PaymentSplit.payment_id == payment_id,
                PaymentSplit.sync_status != SyncStatus.LOCALLY_DELETED,
            )
            .order_by(PaymentSplit.id)
        ).all()
    )


class CurrencyConversionCoordinator:
    def __init__(self, engine, remote=None, network=None):
        """
        Args:
            engine: SQLAlchemy engine.
            remote: RemoteApi; None disables remote propagation.
            network: NetworkMonitor; when given, propagation is skipped offline.
        """
        self.engine = engine
        self.remote = remote
        self.network = network

    async def perform_conversion(
        self,
        payment_id: int,
        from_currency: str,
        to_currency: str,
        amount: Decimal,
        exchange_rate: Decimal,
        user_id: int,
        source: str = "manual",
    ) -> Result:
        """Returns Ok(CurrencyConversion) once the local write committed, else Failure."""
        try:
            conversion = self._convert_locally(
                payment_id, from_currency, to_currency, amount, exchange_rate, user_id, source
            )
        except Exception as exc:
            logger.error("Conversion of payment %s failed: %s", payment_id, exc)
            return Failure(exc)

        if self.remote is None:
            return Ok(conversion)
        if self.network is not None and not await self.network.is_online():
            logger.info("Offline; conversion %s left for the next sync", conversion.id)
            return Ok(conversion)

        try:
            conversion = await self._propagate(conversion.id)
        except Exception as exc:
            logger.warning(
                "Conversion %s saved locally, server update failed: %s", conversion.id, exc
            )
        return Ok(conversion)

    def _convert_locally(
        self,
        payment_id: int,
        from_currency: str,
        to_currency: str,
        amount: Decimal,
        exchange_rate: Decimal,
        user_id: int,
        source: str,
    ) -> CurrencyConversion:
        now = utcnow()
        converted = convert_amount(amount, exchange_rate)

        with Session(self.engine) as s:
            payment = s.get(Payment, payment_id)
            if payment is None:
                raise EntityNotFoundError(f"Payment {payment_id} not found")
            splits = _live_splits(s, payment_id)

            shares = [
                SplitShare(
                    user_id=split.user_id,
                    amount=split.amount,
                    currency=split.currency,
                    percentage=split.percentage,
                )
                for split in splits
            ]
            # raises SplitVerificationError before anything is written
            converted_shares = calculate_splits(
                payment.split_mode, converted, to_currency, shares, user_id, now
            )

            conversion = CurrencyConversion(
                payment_id=payment_id,
                original_currency=from_currency,
                original_amount=round_half_up(amount),
                final_currency=to_currency,
                final_amount=converted,
                exchange_rate=as_decimal(exchange_rate),
                source=source,
                created_by=user_id,
                created_at=now,
            )
            mark_status(conversion, SyncStatus.PENDING_SYNC, now)
            s.add(conversion)

            payment.currency = to_currency
            payment.amount = converted
            payment.updated_by = user_id
            mark_dirty(payment, now)
            s.add(payment)

            for split, share in zip(splits, converted_shares):
                split.amount = share.amount
                split.currency = share.currency
                split.percentage = share.percentage
                split.updated_by = user_id
                mark_dirty(split, now)
                s.add(split)

            s.commit()
            s.refresh(conversion)
            logger.info(
                "Payment %s converted %s %s -> %s %s (%d splits)",
                payment_id, amount, from_currency, converted, to_currency, len(splits),
            )
            return conversion

    async def _propagate(self, conversion_id: int) -> CurrencyConversion:
        with Session(self.engine) as s:
            conversion = s.get(CurrencyConversion, conversion_id)
            payment = s.get(Payment, conversion.payment_id)
            if payment.server_id is None:
                raise EntityNotFoundError(f"Payment {payment.id} has no server id yet")
            splits = _live_splits(s, payment.id)

            payment_local_id, payment_server_id = payment.id, payment.server_id
            payment_payload = PAYMENT_CODEC.to_payload(s, payment)
            conversion_payload = CONVERSION_CODEC.to_payload(s, conversion)
            split_payloads = [(split.id, split.server_id, SPLIT_CODEC.to_payload(s, split)) for split in splits]
            touched = {
                (Payment, payment.id): payment.updated_at,
                (CurrencyConversion, conversion.id): conversion.updated_at,
            }
            touched.update({(PaymentSplit, split.id): split.updated_at for split in splits})

        responses = {}
        responses[(Payment, payment_local_id)] = await self.remote.update(
            "payments", payment_server_id, payment_payload
        )
        responses[(CurrencyConversion, conversion_id)] = await self.remote.create_conversion(
            conversion_payload
        )
        for split_id, split_server_id, payload in split_payloads:
            if split_server_id is None:
                response = await self.remote.create_split(payment_server_id, payload)
            else:
                response = await self.remote.update_split(payment_server_id, split_server_id, payload)
            responses[(PaymentSplit, split_id)] = response

        synced_at = utcnow()
        with Session(self.engine) as s:
            for (model, local_id), response in responses.items():
                row = s.get(model, local_id)
                if row is None:
                    continue
                assign_server_id(row, response.get("id"))
                # a row edited while we were talking to the server stays dirty
                if row.updated_at == touched[(model, local_id)]:
                    mark_status(row, SyncStatus.SYNCED, synced_at)
                s.add(row)
            s.commit()
            conversion = s.get(CurrencyConversion, conversion_id)
            s.refresh(conversion)
            return conversion


def conversions_for_payment(engine, payment_id: int) -> List[CurrencyConversion]:
    """Audit trail of a payment, oldest first."""
    with Session(engine) as s:
        return list(
            s.exec(
                select(CurrencyConversion)
                .where(CurrencyConversion.payment_id == payment_id)
                .order_by(col(CurrencyConversion.created_at), CurrencyConversion.id)
            ).all()
        )
