"""
Offline queue and sync session models.

Tills that lose connectivity keep ringing up sales; each operation is
queued here with a checksum of its payload and replayed against the
server by SyncService once the connection is back.
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, Enum, JSON, Uuid, ForeignKey
from uuid import uuid4
import enum

from app.database.database import Base
from app.common.mixins import TimestampMixin
from app.common.utils import utc_now


class QueueEntityType(str, enum.Enum):
    SALE = "sale"
    PAYMENT = "payment"
    RECEIPT = "receipt"


class QueueOperation(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class QueueSyncStatus(str, enum.Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"
    CONFLICT = "conflict"
    SKIPPED = "skipped"


class ConflictType(str, enum.Enum):
    NONE = "none"
    DUPLICATE = "duplicate"
    INTEGRITY = "integrity"
    VALIDATION = "validation"


class ResolutionStrategy(str, enum.Enum):
    KEEP_ONLINE = "keep_online"
    KEEP_OFFLINE = "keep_offline"
    MERGE = "merge"
    SKIP = "skip"
    MANUAL = "manual"


class SyncSessionStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class OfflineQueue(Base, TimestampMixin):
    __tablename__ = "offline_queue"

    id = Column(Uuid, primary_key=True, default=uuid4)
    queue_id = Column(String(100), nullable=False, unique=True, index=True)
    device_id = Column(String(100), nullable=False, index=True)
    entity_type = Column(Enum(QueueEntityType), nullable=False, index=True)
    operation = Column(Enum(QueueOperation), nullable=False, default=QueueOperation.CREATE)
    payload = Column(JSON, nullable=False)
    checksum = Column(String(64), nullable=False, index=True)
    priority = Column(Integer, nullable=False, default=5)

    sync_status = Column(Enum(QueueSyncStatus), nullable=False, default=QueueSyncStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    last_attempt_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    conflict_type = Column(Enum(ConflictType), nullable=False, default=ConflictType.NONE)
    conflict_details = Column(JSON, nullable=True)
    resolution_strategy = Column(Enum(ResolutionStrategy), nullable=True)
    conflict_resolved_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    conflict_resolved_at = Column(DateTime, nullable=True)

    synced_entity_id = Column(String(100), nullable=True)
    synced_at = Column(DateTime, nullable=True)
    queued_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    offline_timestamp = Column(DateTime, nullable=False, default=utc_now)
    meta = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<OfflineQueue(queue_id='{self.queue_id}', status='{self.sync_status}')>"


class SyncLog(Base, TimestampMixin):
    __tablename__ = "sync_logs"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(String(100), nullable=False, unique=True, index=True)
    device_id = Column(String(100), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    status = Column(Enum(SyncSessionStatus), nullable=False, default=SyncSessionStatus.IN_PROGRESS)
    started_at = Column(DateTime, nullable=False, default=utc_now)
    completed_at = Column(DateTime, nullable=True)
    items_total = Column(Integer, nullable=False, default=0)
    items_synced = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    items_conflicted = Column(Integer, nullable=False, default=0)
    items_skipped = Column(Integer, nullable=False, default=0)
    duration_ms = Column(Integer, nullable=True)
    error_summary = Column(JSON, nullable=True)
