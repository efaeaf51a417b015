from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from enum import Enum

from app.modules.sync.models import (
    QueueEntityType, QueueOperation, QueueSyncStatus, ConflictType, ResolutionStrategy, SyncSessionStatus
)


class QueueOperationEnum(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class QueueSyncStatusEnum(str, Enum):
    pending = "pending"
    syncing = "syncing"
    synced = "synced"
    failed = "failed"
    conflict = "conflict"
    skipped = "skipped"


class ResolutionStrategyEnum(str, Enum):
    keep_online = "keep_online"
    keep_offline = "keep_offline"
    merge = "merge"
    skip = "skip"
    manual = "manual"


class QueueRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=100)
    payload: Dict[str, Any]
    operation: QueueOperationEnum = QueueOperationEnum.create
    priority: Optional[int] = Field(None, ge=1, le=10)
    offline_timestamp: Optional[datetime] = Field(None, description="When the till recorded it; defaults to now")


class QueueItemOut(BaseModel):
    id: UUID
    queue_id: str
    device_id: str
    entity_type: QueueEntityType
    operation: QueueOperation
    payload: Dict[str, Any]
    checksum: str
    priority: int
    sync_status: QueueSyncStatus
    attempts: int
    max_attempts: int
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None
    conflict_type: ConflictType
    conflict_details: Optional[Any] = None
    resolution_strategy: Optional[ResolutionStrategy] = None
    conflict_resolved_by: Optional[UUID] = None
    conflict_resolved_at: Optional[datetime] = None
    synced_entity_id: Optional[str] = None
    synced_at: Optional[datetime] = None
    offline_timestamp: datetime
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class QueueStatusUpdate(BaseModel):
    status: QueueSyncStatusEnum
    error_message: Optional[str] = None
    synced_entity_id: Optional[str] = None


class ResolveRequest(BaseModel):
    strategy: ResolutionStrategyEnum
    reason: Optional[str] = None


class QueueStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    by_entity_type: Dict[str, int]
    oldest_pending: Optional[datetime] = None


class CountResult(BaseModel):
    count: int


class SyncRunRequest(BaseModel):
    device_id: Optional[str] = Field(None, description="Every device when omitted")
    limit: int = Field(50, ge=1, le=500)


class SyncLogOut(BaseModel):
    id: UUID
    session_id: str
    device_id: Optional[str] = None
    user_id: Optional[UUID] = None
    status: SyncSessionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    items_total: int
    items_synced: int
    items_failed: int
    items_conflicted: int
    items_skipped: int
    duration_ms: Optional[int] = None
    error_summary: Optional[List[Dict[str, Any]]] = None

    model_config = {"from_attributes": True}


class ConflictCheckRequest(BaseModel):
    device_id: Optional[str] = None
    sale_data: Dict[str, Any]


class ResolutionSuggestion(BaseModel):
    strategy: str
    reason: str
    recommended_actions: List[str]


class ConflictResult(BaseModel):
    has_conflict: bool
    conflict_type: str
    details: List[Dict[str, Any]]
    resolution: Optional[ResolutionSuggestion] = None


class SyncStats(BaseModel):
    days: int
    sessions: int
    items_synced: int
    items_failed: int
    items_conflicted: int
    items_skipped: int
    success_rate: float
    average_duration_ms: Optional[int] = None
    last_sync_at: Optional[datetime] = None
