"""Payment currency conversion route."""
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from splitsync.db.engine import get_engine
from splitsync.errors import EntityNotFoundError, InvariantViolation
from splitsync.models.sync import SyncStatus
from splitsync.money.conversion import CurrencyConversionCoordinator
from splitsync.remote.network import NetworkMonitor
from splitsync.result import Failure
from splitsync.sync.provider import get_remote

router = APIRouter()


class ConversionRequest(BaseModel):
    from_currency: str
    to_currency: str
    amount: Decimal
    exchange_rate: Decimal
    user_id: int
    source: str = "manual"


class ConversionResponse(BaseModel):
    id: int
    payment_id: int
    original_currency: str
    original_amount: Decimal
    final_currency: str
    final_amount: Decimal
    exchange_rate: Decimal
    source: str
    sync_status: SyncStatus
    created_at: datetime


def get_conversion_coordinator() -> CurrencyConversionCoordinator:
    remote = get_remote()
    return CurrencyConversionCoordinator(get_engine(), remote=remote, network=NetworkMonitor(remote))


@router.post("/{payment_id}/convert", response_model=ConversionResponse)
async def convert_payment(
    payment_id: int,
    request: ConversionRequest,
    coordinator: CurrencyConversionCoordinator = Depends(get_conversion_coordinator),
):
    result = await coordinator.perform_conversion(
        payment_id,
        request.from_currency,
        request.to_currency,
        request.amount,
        request.exchange_rate,
        request.user_id,
        request.source,
    )
    if isinstance(result, Failure):
        if isinstance(result.error, EntityNotFoundError):
            raise HTTPException(status_code=404, detail=str(result.error))
        if isinstance(result.error, (InvariantViolation, ValueError)):
            raise HTTPException(status_code=422, detail=str(result.error))
        raise HTTPException(status_code=500, detail="Conversion failed")

    conversion = result.value
    return ConversionResponse(
        id=conversion.id,
        payment_id=conversion.payment_id,
        original_currency=conversion.original_currency,
        original_amount=conversion.original_amount,
        final_currency=conversion.final_currency,
        final_amount=conversion.final_amount,
        exchange_rate=conversion.exchange_rate,
        source=conversion.source,
        sync_status=conversion.sync_status,
        created_at=conversion.created_at,
    )
