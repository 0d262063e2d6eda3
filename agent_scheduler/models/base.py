"""Declarative base and shared columns"""

from datetime import datetime, timezone
from sqlalchemy import Column, TIMESTAMP
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import declarative_base
import uuid

Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class BaseModel(Base):
    """
    Abstract base for tables keyed by a UUID string.

    Provides:
    - id: UUID primary key
    - created_at: Timestamp of creation (naive UTC)
    - updated_at: Timestamp of last update (naive UTC)
    """
    __abstract__ = True

    id = Column(CHAR(36), primary_key=True, default=new_id)
    created_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow, nullable=False)
