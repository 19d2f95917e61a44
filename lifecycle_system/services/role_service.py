# lifecycle_system/services/role_service.py
"""
Role mutations with audit history and identity metadata sync.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.enums import Role, SideEffectKind
from models.history import RoleChangeHistory
from models.member import Member
from models.side_effect_queue import SideEffectTask

logger = logging.getLogger(__name__)


class RoleService:
    """Single write path for Member.role."""

    def __init__(self, session: Session, sideEffects: SideEffectService, clock: Optional[TimeMachine] = None):
        self.session = session
        self.sideEffects = sideEffects
        self.clock = clock or timeMachine

    def changeRole(
            self,
            member: Member,
            toRole: Role,
            reason: str,
            changedBy: str,
            method: str
    ) -> List[SideEffectTask]:
        """
        Change member role inside the caller's transaction.

        Writes RoleChangeHistory and enqueues the identity metadata sync.
        Does not commit.

        Args:
            member: Member locked by the caller
            toRole: New role
            reason: Audit reason
            changedBy: Admin id or "SYSTEM"
            method: "application", "onboarding" or "demotion"

        Returns:
            Outbox tasks to dispatch after commit
        """
        fromRole = member.role
        member.role = toRole
        if toRole != Role.MANAGER:
            member.rangeNumber = 1

        self.session.add(RoleChangeHistory(
            memberID=member.memberID,
            fromRole=fromRole,
            toRole=toRole,
            reason=reason,
            changedBy=changedBy,
            method=method,
            changedAt=self.clock.now
        ))

        logger.info(
            f"Member {member.memberID} role changed: {fromRole.value} → {toRole.value} "
            f"(method={method}, by={changedBy})"
        )

        return [
            self.sideEffects.enqueue(
                SideEffectKind.UPDATE_ROLE_METADATA,
                member.memberID,
                {"userId": member.externalID or str(member.memberID), "role": toRole.value}
            ),
            self.sideEffects.enqueueNotification(
                member.memberID,
                "role_changed",
                {"fromRole": fromRole.value, "toRole": toRole.value, "reason": reason}
            ),
        ]
