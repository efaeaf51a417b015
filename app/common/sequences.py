"""
Document numbering backed by one counter row per prefix.

Numbers look like ST-2026-0007 or SALE-20260314-0012. The counter for a
prefix is created on first use from the highest number already stored.
"""
from sqlalchemy import Column, String, Integer, Uuid
from sqlalchemy.orm import Session
from uuid import uuid4

from app.database.database import Base
from app.common.mixins import TimestampMixin


class DocumentSequence(Base, TimestampMixin):
    __tablename__ = "document_sequences"

    id = Column(Uuid, primary_key=True, default=uuid4)
    prefix = Column(String(50), nullable=False, unique=True, index=True)
    current_number = Column(Integer, nullable=False, default=0)


def sequence_tail(value: str, prefix: str) -> int:
    """Counter part of a stored number; ST-2026-0007-2 gives 7."""
    tail = value[len(prefix):].split("-")[0]
    return int(tail) if tail.isdigit() else 0


def _highest_stored(db: Session, column, prefix: str) -> int:
    values = db.query(column).filter(column.like(f"{prefix}%")).all()
    return max((sequence_tail(value, prefix) for (value,) in values if value), default=0)


def next_sequence_number(db: Session, column, prefix: str, width: int = 4) -> str:
    """
    Next number for ``prefix``, zero padded to ``width``.

    ``column`` is the string column holding the numbers. It is only read
    when the counter row does not exist yet.
    """
    sequence = (
        db.query(DocumentSequence)
        .filter(DocumentSequence.prefix == prefix)
        .with_for_update()
        .first()
    )
    if not sequence:
        sequence = DocumentSequence(prefix=prefix, current_number=_highest_stored(db, column, prefix))
        db.add(sequence)

    sequence.current_number += 1
    db.flush()
    return f"{prefix}{str(sequence.current_number).zfill(width)}"
