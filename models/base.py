# models/base.py
"""
Declarative base shared by every lifecycle table, plus the audit timestamp mixin.

Timestamps come from the lifecycle clock so that rows written during a
virtual-time run carry the virtual time, not the wall clock.
"""
from sqlalchemy import Column, DateTime, MetaData
from sqlalchemy.orm import declarative_base

# Generated constraint names stay identical on SQLite and PostgreSQL
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))


def _get_current_time():
    """Lazy import to avoid circular dependency."""
    from lifecycle_system.utils.time_machine import timeMachine
    return timeMachine.now


class AuditMixin:
    """createdAt / updatedAt stamped from the lifecycle clock."""

    createdAt = Column(DateTime, default=_get_current_time)
    updatedAt = Column(DateTime, default=_get_current_time, onupdate=_get_current_time)
