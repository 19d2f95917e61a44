# lifecycle_system/services/promotion_service.py
"""
Promotion workflow (application review).

PENDING → APPROVED | REJECTED, both terminal.

APPROVED for ASSOCIATE unlocks the onboarding checklist; the role changes
later, in AssociateCompletionHandler, once the checklist is done.
APPROVED for MANAGER changes the role immediately.
"""
import logging
from typing import Dict, Any, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lifecycle_system.errors import ValidationError, StateError, ConflictError, NotFoundError
from lifecycle_system.services.eligibility_service import EligibilityService, parseRole
from lifecycle_system.services.onboarding_service import resetOnboarding
from lifecycle_system.services.role_service import RoleService
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.members import lock_member, get_member
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.enums import Role, MembershipStatus, ApplicationStatus, ReviewDecision
from models.history import RoleChangeHistory
from models.member import Member
from models.promotion import PromotionApplication
from models.side_effect_queue import SideEffectTask

logger = logging.getLogger(__name__)


class PromotionService:
    """Service for promotion applications and their review."""

    def __init__(
            self,
            session: Session,
            eligibility: Optional[EligibilityService] = None,
            sideEffects: Optional[SideEffectService] = None,
            clock: Optional[TimeMachine] = None
    ):
        self.session = session
        self.clock = clock or timeMachine
        self.eligibility = eligibility or EligibilityService(session, clock=self.clock)
        self.sideEffects = sideEffects or SideEffectService(session, clock=self.clock)
        self.roles = RoleService(session, self.sideEffects, self.clock)

    # ═══════════════════════════════════════════════════════════════════
    # SUBMISSION
    # ═══════════════════════════════════════════════════════════════════

    def _checkSubmission(self, member: Member, targetRole: Role):
        if member.role.next() != targetRole:
            raise ValidationError(
                f"Member {member.memberID} ({member.role.value}) cannot apply for {targetRole.value}",
                details={"currentRole": member.role.value, "targetRole": targetRole.value}
            )

        if member.membershipStatus != MembershipStatus.ACTIVE:
            raise StateError(
                f"Promotion requires ACTIVE membership (current: {member.membershipStatus.value})",
                details={"status": member.membershipStatus.value}
            )

        pending = self.session.query(PromotionApplication).filter(
            PromotionApplication.memberID == member.memberID,
            PromotionApplication.status == ApplicationStatus.PENDING
        ).first()
        if pending:
            raise ConflictError(
                f"Member {member.memberID} already has a pending application",
                details={"applicationId": pending.applicationID}
            )

        # An approved application stays open until onboarding performs the role change
        inOnboarding = self.session.query(PromotionApplication).filter(
            PromotionApplication.memberID == member.memberID,
            PromotionApplication.targetRole == targetRole,
            PromotionApplication.status == ApplicationStatus.APPROVED,
            PromotionApplication.completedAt.is_(None)
        ).first()
        if inOnboarding:
            raise ConflictError(
                f"Member {member.memberID} has an approved {targetRole.value} application in onboarding",
                details={"applicationId": inOnboarding.applicationID}
            )

    async def submitPromotionApplication(self, memberId: int, targetRole) -> int:
        """
        Create a PENDING application for the role directly above the current one.

        Returns:
            applicationId

        Raises:
            ValidationError: Target is not the next role, or MANAGER criteria not met
            StateError: Member not ACTIVE
            ConflictError: A PENDING application, or an APPROVED one still in onboarding, exists
        """
        targetRole = parseRole(targetRole)

        # Fail fast before evaluating eligibility
        member = get_member(self.session, memberId)
        self._checkSubmission(member, targetRole)

        if targetRole == Role.MANAGER:
            report = await self.eligibility.evaluateEligibility(memberId, targetRole)
            if not report["isEligible"]:
                unmet = [name for name, c in report["criteria"].items() if not c["met"]]
                raise ValidationError(
                    f"Member {memberId} does not meet MANAGER criteria: {', '.join(unmet)}",
                    details={"eligibility": report}
                )

        try:
            # Insert-if-absent under the member lock
            member = lock_member(self.session, memberId)
            self._checkSubmission(member, targetRole)

            application = PromotionApplication(
                memberID=memberId,
                fromRole=member.role,
                targetRole=targetRole,
                status=ApplicationStatus.PENDING,
                appliedAt=self.clock.now
            )
            self.session.add(application)
            self.session.flush()
            applicationId = application.applicationID

            tasks = [self.sideEffects.enqueueNotification(
                memberId, "promotion_applied", {"targetRole": targetRole.value}
            )]
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.warning(f"Concurrent pending application rejected for member {memberId}")
            raise ConflictError(f"Member {memberId} already has a pending application")
        except Exception:
            self.session.rollback()
            raise

        await self.sideEffects.dispatch(tasks)

        logger.info(f"Promotion application {applicationId} submitted: member={memberId}, target={targetRole.value}")
        return applicationId

    # ═══════════════════════════════════════════════════════════════════
    # REVIEW
    # ═══════════════════════════════════════════════════════════════════

    async def reviewPromotionApplication(
            self,
            applicationId: int,
            decision,
            reviewerId: str,
            notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Approve or reject a PENDING application.

        Returns:
            Dict with applicationId, status, roleChanged, onboardingUnlocked, sideEffects

        Raises:
            NotFoundError: Unknown application
            StateError: Application is not PENDING
            ValidationError: Unknown decision, or rejection without reason
        """
        try:
            decision = ReviewDecision(str(decision).upper())
        except ValueError:
            raise ValidationError(
                f"Unknown decision: {decision!r}",
                details={"allowed": [d.value for d in ReviewDecision]}
            )

        if decision == ReviewDecision.REJECTED and not (notes and notes.strip()):
            raise ValidationError("A rejection reason is required")

        roleChanged = False
        onboardingUnlocked = False
        tasks: List[SideEffectTask] = []
        now = self.clock.now

        try:
            application = self.session.query(PromotionApplication).filter(
                PromotionApplication.applicationID == applicationId
            ).with_for_update().first()
            if not application:
                raise NotFoundError(f"Application {applicationId} not found")

            if application.status != ApplicationStatus.PENDING:
                raise StateError(
                    f"Application {applicationId} is already {application.status.value}",
                    details={"status": application.status.value}
                )

            member = lock_member(self.session, application.memberID)
            application.reviewedAt = now
            application.reviewerID = reviewerId
            application.reviewNotes = notes

            if decision == ReviewDecision.REJECTED:
                application.status = ApplicationStatus.REJECTED
                application.rejectedAt = now
                application.rejectionReason = notes
                tasks.append(self.sideEffects.enqueueNotification(
                    member.memberID, "promotion_rejected",
                    {"targetRole": application.targetRole.value, "reason": notes}
                ))

            elif application.targetRole == Role.ASSOCIATE:
                application.status = ApplicationStatus.APPROVED
                resetOnboarding(member, unlock=True)
                onboardingUnlocked = True
                tasks.append(self.sideEffects.enqueueNotification(
                    member.memberID, "onboarding_unlocked", {"targetRole": Role.ASSOCIATE.value}
                ))

            else:
                if member.role != application.fromRole:
                    raise StateError(
                        f"Member role changed since application ({application.fromRole.value} → "
                        f"{member.role.value})"
                    )
                application.status = ApplicationStatus.APPROVED
                application.completedAt = now
                tasks.extend(self.roles.changeRole(
                    member,
                    application.targetRole,
                    reason=f"Promotion application {applicationId} approved",
                    changedBy=reviewerId,
                    method="application"
                ))
                roleChanged = True

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self.sideEffects.dispatch(tasks)

        logger.info(
            f"Application {applicationId} reviewed: decision={decision.value}, "
            f"reviewer={reviewerId}, roleChanged={roleChanged}"
        )

        return {
            "applicationId": applicationId,
            "status": decision.value,
            "roleChanged": roleChanged,
            "onboardingUnlocked": onboardingUnlocked,
            "sideEffects": sideEffects,
        }

    # ═══════════════════════════════════════════════════════════════════
    # QUERIES
    # ═══════════════════════════════════════════════════════════════════

    async def listApplications(self, status=None) -> List[Dict[str, Any]]:
        query = self.session.query(PromotionApplication)
        if status:
            try:
                query = query.filter(PromotionApplication.status == ApplicationStatus(str(status).upper()))
            except ValueError:
                raise ValidationError(f"Unknown application status: {status!r}")

        return [
            {
                "applicationId": a.applicationID,
                "memberId": a.memberID,
                "fromRole": a.fromRole.value,
                "targetRole": a.targetRole.value,
                "status": a.status.value,
                "appliedAt": a.appliedAt,
                "reviewedAt": a.reviewedAt,
                "rejectionReason": a.rejectionReason,
                "completedAt": a.completedAt,
            }
            for a in query.order_by(PromotionApplication.appliedAt).all()
        ]

    async def getPromotionCounters(self) -> Dict[str, int]:
        """
        Cumulative promotion counts from two independent sources.

        applicationPromotions: APPROVED applications whose role change happened
        roleChangePromotions: upward RoleChangeHistory rows

        A member can appear in both, so the values are never added together.
        """
        applicationPromotions = self.session.query(PromotionApplication).filter(
            PromotionApplication.status == ApplicationStatus.APPROVED,
            PromotionApplication.completedAt.isnot(None)
        ).count()

        roleChangePromotions = sum(
            1 for row in self.session.query(RoleChangeHistory).all()
            if row.toRole.rank > row.fromRole.rank
        )

        return {
            "applicationPromotions": applicationPromotions,
            "roleChangePromotions": roleChangePromotions,
        }


class AssociateCompletionHandler:
    """
    Onboarding completion callback: performs the deferred BASE → ASSOCIATE
    change and closes the approved application.
    """

    def __init__(self, session: Session, sideEffects: SideEffectService, clock: Optional[TimeMachine] = None):
        self.session = session
        self.clock = clock or timeMachine
        self.roles = RoleService(session, sideEffects, self.clock)

    async def handle(self, member: Member) -> List[SideEffectTask]:
        if member.role != Role.BASE:
            logger.info(f"Member {member.memberID} finished onboarding as {member.role.value}, no role change")
            return []

        application = self.session.query(PromotionApplication).filter(
            PromotionApplication.memberID == member.memberID,
            PromotionApplication.targetRole == Role.ASSOCIATE,
            PromotionApplication.status == ApplicationStatus.APPROVED,
            PromotionApplication.completedAt.is_(None)
        ).order_by(PromotionApplication.reviewedAt.desc()).first()

        if application:
            application.completedAt = self.clock.now
            reason = f"Onboarding completed (application {application.applicationID})"
        else:
            reason = "Onboarding completed"

        return self.roles.changeRole(
            member,
            Role.ASSOCIATE,
            reason=reason,
            changedBy="SYSTEM",
            method="onboarding"
        )
