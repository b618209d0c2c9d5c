"""Transaction feed quota and manual refresh routes."""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from splitsync.config import get_settings
from splitsync.db.engine import get_engine
from splitsync.errors import EntityNotFoundError, RefreshDeniedError, TransientSyncError
from splitsync.feed.service import TransactionFeedService, build_feed_service
from splitsync.storage.kv import SqlKeyValueStore
from splitsync.sync.provider import get_remote

router = APIRouter()


class RefreshRequest(BaseModel):
    user_id: int


class RateLimitResponse(BaseModel):
    remaining_calls: int
    max_calls: int
    cooldown_minutes_remaining: int
    time_until_reset_ms: int


class RefreshResponse(BaseModel):
    count: int
    transactions: List[Dict[str, Any]]


def get_feed_service() -> TransactionFeedService:
    engine = get_engine()
    return build_feed_service(engine, get_remote(), SqlKeyValueStore(engine), settings=get_settings())


def _rate_limit_response(info) -> RateLimitResponse:
    return RateLimitResponse(
        remaining_calls=info.remaining_calls,
        max_calls=info.max_calls,
        cooldown_minutes_remaining=info.cooldown_minutes_remaining,
        time_until_reset_ms=info.time_until_reset_ms,
    )


@router.get("/rate-limit", response_model=RateLimitResponse)
def rate_limit(user_id: int, service: TransactionFeedService = Depends(get_feed_service)):
    return _rate_limit_response(service.policy.rate_limit_info(user_id))


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(request: RefreshRequest, service: TransactionFeedService = Depends(get_feed_service)):
    """Explicit user refresh. 429 when the daily quota is spent."""
    service.policy.update_user_activity(request.user_id)
    try:
        transactions = await service.fetch_and_cache(request.user_id, force=True)
    except RefreshDeniedError as exc:
        detail: Dict[str, Any] = {"message": str(exc)}
        if exc.rate_limit is not None:
            detail["rate_limit"] = _rate_limit_response(exc.rate_limit).model_dump()
        raise HTTPException(status_code=429, detail=detail)
    except EntityNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except TransientSyncError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return RefreshResponse(count=len(transactions), transactions=transactions)
