"""
Common mixins for restaurant models
"""
from sqlalchemy import Column, DateTime

from app.common.utils import utc_now


class TimestampMixin:
    """Mixin for models that need timestamp tracking"""

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

