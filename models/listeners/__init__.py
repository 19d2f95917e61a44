"""
SQLAlchemy event listeners guarding the audit and payroll tables.

- history_listeners: status/role history rows are append-only; locked
  compensation rows are immutable until unlocked.

register_all_listeners() is idempotent and is called from app startup and
from the test session fixture.
"""
import logging

logger = logging.getLogger(__name__)

_listeners_registered = False


def register_all_listeners():
    global _listeners_registered

    if _listeners_registered:
        logger.debug("Listeners already registered, skipping")
        return

    from models.listeners.history_listeners import (
        register_history_protection,
        register_compensation_lock_protection
    )

    for register in (register_history_protection, register_compensation_lock_protection):
        register()
        logger.info(f"Listener group registered: {register.__name__}")

    _listeners_registered = True
