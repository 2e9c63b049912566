"""
Declarative base for all ORM models.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""


def generate_uuid() -> str:
    """Primary keys are string UUIDs so job ids can embed them."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp with microsecond precision (used for ordering)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
