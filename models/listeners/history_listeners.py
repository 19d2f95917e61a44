# models/listeners/history_listeners.py
"""
Audit protection listeners.

Architecture:
    MembershipStatusHistory (UPDATE/DELETE) → rejected, table is append-only
    RoleChangeHistory (UPDATE/DELETE)       → rejected, table is append-only
    Compensation (UPDATE/DELETE while locked) → rejected until an admin unlocks

Lock bookkeeping fields (isLocked, lockedAt, unlockedAt, unlockedBy) stay
writable on locked rows so lock/unlock itself goes through.
"""
import logging

from sqlalchemy import event, inspect, select

logger = logging.getLogger(__name__)

COMPENSATION_LOCK_FIELDS = {"isLocked", "lockedAt", "unlockedAt", "unlockedBy", "updatedAt"}


def register_history_protection():
    """
    Make audit history tables append-only.

    Called once during application startup from models/listeners/__init__.py
    """
    from lifecycle_system.errors import StateError
    from models.history import MembershipStatusHistory, RoleChangeHistory

    def reject_history_update(mapper, connection, target):
        logger.warning(
            f"Blocked UPDATE on append-only {type(target).__name__} "
            f"historyID={target.historyID}"
        )
        raise StateError(f"{type(target).__name__} rows are append-only")

    def reject_history_delete(mapper, connection, target):
        logger.warning(
            f"Blocked DELETE on append-only {type(target).__name__} "
            f"historyID={target.historyID}"
        )
        raise StateError(f"{type(target).__name__} rows cannot be deleted")

    for model in (MembershipStatusHistory, RoleChangeHistory):
        event.listen(model, 'before_update', reject_history_update)
        event.listen(model, 'before_delete', reject_history_delete)


# =========================================================================
# LOCKED COMPENSATION
# =========================================================================

def register_compensation_lock_protection():
    """
    Refuse writes to locked Compensation rows.

    The stored lock flag is read through the flush connection, so a row
    loaded before it was locked elsewhere is still protected.
    """
    from lifecycle_system.errors import StateError
    from models.compensation import Compensation

    table = Compensation.__table__

    def _stored_lock(connection, compensation_id) -> bool:
        result = connection.execute(
            select(table.c.isLocked).where(table.c.compensationID == compensation_id)
        )
        return bool(result.scalar())

    def guard_locked_update(mapper, connection, target):
        if not _stored_lock(connection, target.compensationID):
            return

        state = inspect(target)
        changed = [
            attr.key for attr in state.attrs
            if attr.key not in COMPENSATION_LOCK_FIELDS and attr.history.has_changes()
        ]
        # Unlocking in the same flush as edits is still an edit of a locked row
        if changed:
            logger.warning(
                f"Blocked UPDATE on locked Compensation {target.compensationID}: "
                f"fields={changed}"
            )
            raise StateError(
                f"Compensation {target.compensationID} is locked",
                details={"compensationId": target.compensationID, "fields": changed}
            )

    def guard_locked_delete(mapper, connection, target):
        if _stored_lock(connection, target.compensationID):
            logger.warning(f"Blocked DELETE on locked Compensation {target.compensationID}")
            raise StateError(f"Compensation {target.compensationID} is locked")

    event.listen(Compensation, 'before_update', guard_locked_update)
    event.listen(Compensation, 'before_delete', guard_locked_delete)
