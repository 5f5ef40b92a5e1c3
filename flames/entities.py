# flames/entities.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, JSON, String, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )


class Document(Base, TimestampMixin):
    """
    One schemaless record of a collection. `data` holds the whole record,
    including its own copy of the id.
    """
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_documents_collection_created_at", "collection", "created_at"),
    )
