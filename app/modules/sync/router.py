from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import Optional, List

from app.dependencies.dbDependecies import get_db
from app.modules.auth.dependencies import AuthDependencies, MANAGEMENT_ROLES, FRONT_OF_HOUSE_ROLES
from app.modules.auth.schemas import AuthContext
from app.modules.sync.models import QueueSyncStatus, ResolutionStrategy, QueueOperation
from app.modules.sync.service import OfflineQueueService, SyncService
from app.modules.sync.conflicts import ConflictResolutionService
from app.modules.sync.schemas import (
    QueueRequest, QueueItemOut, QueueStatusUpdate, ResolveRequest, QueueStats, CountResult,
    SyncRunRequest, SyncLogOut, ConflictCheckRequest, ConflictResult, SyncStats
)

offline_router = APIRouter(prefix="/offline/queue", tags=["Offline Queue"])
sync_router = APIRouter(prefix="/sync", tags=["Sync"])


def _queue_kwargs(request: QueueRequest) -> dict:
    return {
        "operation": QueueOperation(request.operation.value),
        "priority": request.priority,
        "offline_timestamp": request.offline_timestamp,
    }


# ===== OFFLINE QUEUE =====

@offline_router.post("/sale", response_model=QueueItemOut, status_code=status.HTTP_201_CREATED)
async def queue_sale(
    request: QueueRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Queue a sale recorded while the till was offline.

    Priority defaults to 5. The same payload queued twice from one device
    returns 409 until the first copy has synced.
    """
    return OfflineQueueService(db).queue_sale(
        request.device_id, request.payload, auth_context.user_id, **_queue_kwargs(request)
    )


@offline_router.post("/payment", response_model=QueueItemOut, status_code=status.HTTP_201_CREATED)
async def queue_payment(
    request: QueueRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return OfflineQueueService(db).queue_payment(
        request.device_id, request.payload, auth_context.user_id, **_queue_kwargs(request)
    )


@offline_router.post("/receipt", response_model=QueueItemOut, status_code=status.HTTP_201_CREATED)
async def queue_receipt(
    request: QueueRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return OfflineQueueService(db).queue_receipt(
        request.device_id, request.payload, auth_context.user_id, **_queue_kwargs(request)
    )


@offline_router.get("/pending", response_model=List[QueueItemOut])
async def pending_items(
    device_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return OfflineQueueService(db).get_pending(device_id, limit)


@offline_router.get("/stats", response_model=QueueStats)
async def queue_stats(
    device_id: Optional[str] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return OfflineQueueService(db).stats(device_id)


@offline_router.get("/conflicts", response_model=List[QueueItemOut])
async def conflicted_items(
    device_id: Optional[str] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return OfflineQueueService(db).get_conflicted(device_id)


@offline_router.post("/reset-failed", response_model=CountResult)
async def reset_failed(
    device_id: Optional[str] = Query(None),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """Put failed items back to pending with their attempts zeroed."""
    return {"count": OfflineQueueService(db).reset_failed(device_id)}


@offline_router.delete("/synced", response_model=CountResult)
async def clear_synced(
    older_than_days: Optional[int] = Query(None, ge=0, description="Defaults to the retention window"),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return {"count": OfflineQueueService(db).clear_synced(older_than_days)}


@offline_router.patch("/{queue_id}/status", response_model=QueueItemOut)
async def update_status(
    queue_id: str,
    update: QueueStatusUpdate,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return OfflineQueueService(db).update_status(
        queue_id, QueueSyncStatus(update.status.value), update.error_message, update.synced_entity_id
    )


@offline_router.post("/{queue_id}/resolve", response_model=QueueItemOut)
async def resolve_conflict(
    queue_id: str,
    request: ResolveRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    """
    Decide what happens to a conflicted item.

    - **skip**: never sync it
    - **keep_offline** / **merge**: sync it without conflict checks
    - **keep_online**: keep the server's record and mark the item synced
    """
    return ConflictResolutionService(db).apply_resolution(
        queue_id, ResolutionStrategy(request.strategy.value), auth_context.user_id, request.reason
    )


# ===== SYNC =====

@sync_router.post("/run", response_model=SyncLogOut)
def run_sync(
    request: SyncRunRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return SyncService(db).sync_pending_items(request.device_id, auth_context.user_id, request.limit)


@sync_router.get("/sessions", response_model=List[SyncLogOut])
async def list_sessions(
    device_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return SyncService(db).list_sessions(device_id, limit, offset)


@sync_router.get("/sessions/{session_id}", response_model=SyncLogOut)
async def get_session(
    session_id: str,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    return SyncService(db).get_session(session_id)


@sync_router.post("/detect-conflict/sale", response_model=ConflictResult)
async def detect_sale_conflict(
    request: ConflictCheckRequest,
    auth_context: AuthContext = Depends(AuthDependencies.require_role(FRONT_OF_HOUSE_ROLES)),
    db: Session = Depends(get_db)
):
    """Dry run of the sale conflict checks. Nothing is written."""
    try:
        return ConflictResolutionService(db).detect_sale_conflict(request.sale_data, request.device_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@sync_router.get("/stats", response_model=SyncStats)
async def sync_stats(
    device_id: Optional[str] = Query(None),
    days: int = Query(7, ge=1, le=90),
    auth_context: AuthContext = Depends(AuthDependencies.require_role(MANAGEMENT_ROLES)),
    db: Session = Depends(get_db)
):
    return SyncService(db).stats(device_id, days)
