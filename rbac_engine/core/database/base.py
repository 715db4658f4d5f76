"""
SQLAlchemy declarative base and common model utilities.

All SQLAlchemy models should inherit from Base.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from rbac_engine.core.database.base import Base

        class Permission(Base):
            __tablename__ = "permissions"

            name: Mapped[str] = mapped_column(String(256), primary_key=True)
    """
    pass


class CreatedAtMixin:
    """
    Mixin to add a created_at timestamp to models.

    Used by rows that are inserted and deleted but never edited in place
    (join rows, reconciled metadata).
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """
    Mixin to add created_at and updated_at timestamps to models.

    Usage:
        class Role(Base, TimestampMixin):
            __tablename__ = "roles"
            id: Mapped[int] = mapped_column(primary_key=True)
    """
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
