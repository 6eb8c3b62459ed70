"""Base models and mixins for database models"""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import DeclarativeBase, declared_attr
from sqlalchemy.sql import func
import uuid

# Create declarative base
class Base(DeclarativeBase):
    pass

def generate_uuid() -> str:
    return str(uuid.uuid4())

class TimestampedModel:
    """Mixin for adding created_at and updated_at timestamps"""

    @declared_attr
    def created_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            index=True
        )

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now()
        )

class UUIDModel:
    """Mixin for adding a string UUID primary key (portable across postgres and sqlite)"""

    @declared_attr
    def id(cls):
        return Column(
            String(36),
            primary_key=True,
            default=generate_uuid,
            nullable=False
        )

class ReprMixin:
    """Mixin showing the primary key in repr"""

    def __repr__(self):
        class_name = self.__class__.__name__
        attributes = []

        for column in self.__table__.columns:
            if column.primary_key:
                attributes.append(f"{column.key}={getattr(self, column.key)!r}")

        return f"<{class_name}({', '.join(attributes)})>"

__all__ = [
    "Base",
    "TimestampedModel",
    "UUIDModel",
    "ReprMixin",
    "generate_uuid",
]
