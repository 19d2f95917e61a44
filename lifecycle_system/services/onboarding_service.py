# lifecycle_system/services/onboarding_service.py
"""
Onboarding checklist unlocked by an approved ASSOCIATE application.

Steps (any order, each idempotent):
    COMPLIANCE_TEST  → complianceTestPassed
    GUIDANCE         → guidanceCompleted
    MANAGER_CONTACT  → managerContactConfirmed
    PAYOUT_ACCOUNT   → payoutAccountRegistered

When the last step lands, the completion callback runs in the same
transaction. The checklist itself never touches Member.role.
"""
import logging
from typing import Awaitable, Callable, Dict, Any, List, Optional

from sqlalchemy.orm import Session

from lifecycle_system.errors import ValidationError, StateError
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.members import lock_member, get_member
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.enums import OnboardingStep
from models.member import Member
from models.side_effect_queue import SideEffectTask

logger = logging.getLogger(__name__)

STEP_FLAGS = {
    OnboardingStep.COMPLIANCE_TEST: "complianceTestPassed",
    OnboardingStep.GUIDANCE: "guidanceCompleted",
    OnboardingStep.MANAGER_CONTACT: "managerContactConfirmed",
    OnboardingStep.PAYOUT_ACCOUNT: "payoutAccountRegistered",
}

CompletionCallback = Callable[[Member], Awaitable[List[SideEffectTask]]]


def resetOnboarding(member: Member, unlock: bool) -> None:
    """Clear every checklist flag; optionally unlock the checklist."""
    for flag in STEP_FLAGS.values():
        setattr(member, flag, False)
    member.complianceTestPassedAt = None
    member.onboardingCompleted = False
    member.onboardingCompletedAt = None
    member.onboardingUnlocked = unlock


def onboardingSteps(member: Member) -> Dict[str, bool]:
    return {step.value: bool(getattr(member, flag)) for step, flag in STEP_FLAGS.items()}


class OnboardingService:
    """Member self-service checklist."""

    def __init__(
            self,
            session: Session,
            sideEffects: Optional[SideEffectService] = None,
            clock: Optional[TimeMachine] = None,
            onCompleted: Optional[CompletionCallback] = None
    ):
        self.session = session
        self.clock = clock or timeMachine
        self.sideEffects = sideEffects or SideEffectService(session, clock=self.clock)

        if onCompleted is None:
            # Import here to avoid circular dependency
            from lifecycle_system.services.promotion_service import AssociateCompletionHandler
            onCompleted = AssociateCompletionHandler(session, self.sideEffects, self.clock).handle
        self.onCompleted = onCompleted

    async def completeOnboardingStep(self, memberId: int, step) -> Dict[str, Any]:
        """
        Mark one checklist step done.

        Returns:
            Dict with steps, onboardingCompleted, roleChanged and sideEffects

        Raises:
            ValidationError: Unknown step
            StateError: Onboarding not unlocked for this member
        """
        try:
            step = step if isinstance(step, OnboardingStep) else OnboardingStep(str(step).upper())
        except ValueError:
            raise ValidationError(
                f"Unknown onboarding step: {step!r}",
                details={"allowed": [s.value for s in OnboardingStep]}
            )

        roleChanged = False
        tasks: List[SideEffectTask] = []

        try:
            member = lock_member(self.session, memberId)

            if not member.onboardingUnlocked:
                raise StateError(
                    f"Onboarding is not unlocked for member {memberId}",
                    details={"memberId": memberId}
                )

            flag = STEP_FLAGS[step]
            if not getattr(member, flag):
                setattr(member, flag, True)
                if step == OnboardingStep.COMPLIANCE_TEST:
                    member.complianceTestPassedAt = self.clock.now
                logger.info(f"Member {memberId} completed onboarding step {step.value}")

            if not member.onboardingCompleted and all(onboardingSteps(member).values()):
                member.onboardingCompleted = True
                member.onboardingCompletedAt = self.clock.now
                logger.info(f"Member {memberId} completed onboarding")

                tasks = await self.onCompleted(member)
                roleChanged = bool(tasks)

            steps = onboardingSteps(member)
            completed = member.onboardingCompleted
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self.sideEffects.dispatch(tasks)

        return {
            "memberId": memberId,
            "step": step.value,
            "steps": steps,
            "onboardingCompleted": completed,
            "roleChanged": roleChanged,
            "sideEffects": sideEffects,
        }

    async def getOnboardingStatus(self, memberId: int) -> Dict[str, Any]:
        member = get_member(self.session, memberId)
        return {
            "memberId": memberId,
            "unlocked": member.onboardingUnlocked,
            "steps": onboardingSteps(member),
            "onboardingCompleted": member.onboardingCompleted,
        }
