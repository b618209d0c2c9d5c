"""Sync trigger, status and per-entity metadata routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, col, select

from splitsync.db.engine import get_engine, get_session
from splitsync.models.sync import SyncLog, SyncStatus
from splitsync.sync.metadata_store import MetadataStore
from splitsync.sync.orchestrator import InProgress, SyncOrchestrator
from splitsync.sync.provider import get_orchestrator

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    force: bool = False


class SyncStatusResponse(BaseModel):
    state: str
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    entities_synced: Optional[int]
    error_message: Optional[str]


class EntityMetadataResponse(BaseModel):
    entity_type: str
    sync_status: SyncStatus
    last_sync_timestamp: int
    last_etag: Optional[str]
    update_count: int
    last_sync_result: Optional[str]


async def _do_sync(orchestrator: SyncOrchestrator, force: bool) -> None:
    """Background task: one orchestrator run."""
    await orchestrator.start_sync(force_sync=force)


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Trigger an on-demand sync run.
    Returns immediately; the run happens in the background.
    """
    if isinstance(orchestrator.state, InProgress):
        raise HTTPException(status_code=409, detail="Sync already in progress")
    background_tasks.add_task(_do_sync, orchestrator, request.force)
    return {"message": "Sync started", "force": request.force}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(
    session: Session = Depends(get_session),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Current orchestrator state plus the most recent recorded run."""
    state = type(orchestrator.state).__name__
    log = session.exec(select(SyncLog).order_by(col(SyncLog.started_at).desc())).first()
    if not log:
        return SyncStatusResponse(
            state=state,
            status="never_run",
            started_at=None,
            finished_at=None,
            entities_synced=None,
            error_message=None,
        )
    return SyncStatusResponse(
        state=state,
        status=log.status,
        started_at=log.started_at,
        finished_at=log.finished_at,
        entities_synced=log.entities_synced,
        error_message=log.error_message,
    )


def get_metadata_store() -> MetadataStore:
    """FastAPI dependency: metadata store over the process-wide engine."""
    return MetadataStore(get_engine())


@router.get("/metadata", response_model=List[EntityMetadataResponse])
def sync_metadata(store: MetadataStore = Depends(get_metadata_store)):
    return [
        EntityMetadataResponse(
            entity_type=row.entity_type,
            sync_status=row.sync_status,
            last_sync_timestamp=row.last_sync_timestamp,
            last_etag=row.last_etag,
            update_count=row.update_count,
            last_sync_result=row.last_sync_result,
        )
        for row in store.list_all()
    ]
