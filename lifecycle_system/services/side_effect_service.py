# lifecycle_system/services/side_effect_service.py
"""
External side effects through an outbox table.

Flow:
    1. enqueue() adds a SideEffectTask inside the caller's transaction
    2. caller commits its state change
    3. dispatch() attempts the tasks and records done / failed
    4. retryFailed() (scheduler) re-attempts failed tasks up to the attempt limit

A provider failure never reverses the committed state change; it is logged,
stored on the task and returned to the caller.
"""
import logging
from datetime import datetime
from typing import List, Optional, Dict, Any

from sqlalchemy.orm import Session

from config import Config
from lifecycle_system.errors import ExternalDependencyError
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.enums import SideEffectKind
from models.side_effect_queue import SideEffectTask

logger = logging.getLogger(__name__)


class SideEffectService:
    """Outbox writer and dispatcher for provider calls."""

    def __init__(
            self,
            session: Session,
            billing=None,
            identity=None,
            notifier=None,
            clock: Optional[TimeMachine] = None
    ):
        self.session = session
        self.billing = billing
        self.identity = identity
        self.notifier = notifier
        self.clock = clock or timeMachine

    # ═══════════════════════════════════════════════════════════════════
    # ENQUEUE (inside the caller's transaction)
    # ═══════════════════════════════════════════════════════════════════

    def enqueue(self, kind: SideEffectKind, memberId: int, payload: Optional[Dict[str, Any]] = None) -> SideEffectTask:
        """Add an outbox row. Does not flush or commit."""
        task = SideEffectTask(
            kind=kind.value,
            memberId=memberId,
            payload=payload or {},
            status='pending',
            attempts=0
        )
        self.session.add(task)
        return task

    def enqueueNotification(self, memberId: int, templateKind: str, context: Optional[dict] = None) -> SideEffectTask:
        return self.enqueue(
            SideEffectKind.NOTIFY,
            memberId,
            {"templateKind": templateKind, "context": context or {}}
        )

    # ═══════════════════════════════════════════════════════════════════
    # DISPATCH (after commit)
    # ═══════════════════════════════════════════════════════════════════

    async def dispatch(self, tasks: List[SideEffectTask]) -> List[Dict[str, Any]]:
        """
        Attempt committed tasks once each.

        Returns:
            One result dict per task: id, kind, status, error
        """
        results = []
        for task in tasks:
            results.append(await self._attempt(task))
        return results

    async def retryFailed(self, batchSize: int = 50) -> Dict[str, int]:
        """
        Re-attempt pending and failed tasks below the attempt limit.

        Returns:
            Dict with processed, done and failed counts
        """
        maxAttempts = Config.get(Config.SIDE_EFFECT_MAX_ATTEMPTS, 5)

        tasks = self.session.query(SideEffectTask).filter(
            SideEffectTask.status.in_(['pending', 'failed']),
            SideEffectTask.attempts < maxAttempts
        ).order_by(SideEffectTask.createdAt, SideEffectTask.id).limit(batchSize).all()

        stats = {"processed": 0, "done": 0, "failed": 0}
        for task in tasks:
            result = await self._attempt(task)
            stats["processed"] += 1
            stats[result["status"]] += 1

        if stats["processed"]:
            logger.info(
                f"Side effect retry sweep: processed={stats['processed']}, "
                f"done={stats['done']}, failed={stats['failed']}"
            )
        return stats

    async def _attempt(self, task: SideEffectTask) -> Dict[str, Any]:
        task.attempts = (task.attempts or 0) + 1
        error = None

        try:
            await self._execute(task)
            task.status = 'done'
            task.completedAt = self.clock.now
            task.lastError = None
        except ExternalDependencyError as e:
            error = e.message
            logger.error(f"Side effect {task.kind} failed for member {task.memberId}: {error}")
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(
                f"Unexpected error in side effect {task.kind} for member {task.memberId}: {e}",
                exc_info=True
            )

        if error is not None:
            task.status = 'failed'
            task.lastError = error[:500]

        self.session.commit()

        return {
            "id": task.id,
            "kind": task.kind,
            "status": task.status,
            "error": error,
        }

    async def _execute(self, task: SideEffectTask):
        kind = SideEffectKind(task.kind)
        payload = task.payload or {}

        if kind in (SideEffectKind.PAUSE_BILLING, SideEffectKind.UNPAUSE_BILLING,
                    SideEffectKind.SCHEDULE_CANCELLATION):
            if self.billing is None:
                raise ExternalDependencyError("Billing provider not configured")

            subscriptionId = payload.get("subscriptionId")
            if kind == SideEffectKind.PAUSE_BILLING:
                await self.billing.pause_billing(subscriptionId, _parse(payload["resumeAt"]))
            elif kind == SideEffectKind.UNPAUSE_BILLING:
                await self.billing.unpause_billing(subscriptionId)
            else:
                await self.billing.schedule_cancellation(subscriptionId, _parse(payload.get("at")))

        elif kind == SideEffectKind.UPDATE_ROLE_METADATA:
            if self.identity is None:
                raise ExternalDependencyError("Identity provider not configured")
            await self.identity.update_role_metadata(payload["userId"], payload["role"])

        elif kind == SideEffectKind.NOTIFY:
            if self.notifier is None:
                raise ExternalDependencyError("Notification dispatcher not configured")
            await self.notifier.notify(task.memberId, payload["templateKind"], payload.get("context") or {})


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
