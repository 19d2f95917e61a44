# lifecycle_system/services/reconciliation_service.py
"""
Scheduled reconciliation jobs.

Auto-resume: SUSPENDED members whose suspensionEnd has passed → ACTIVE.
Auto-demotion: members marked DEMOTED in last month's mandatory meetings → BASE.

Both jobs:
    - require the shared cron secret
    - process each member in its own transaction
    - re-check current state before acting, so re-runs skip finished members
    - return {"succeeded": [...], "skipped": [...], "failed": [...]}
"""
import hmac
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from config import Config
from lifecycle_system.errors import AuthenticationError
from lifecycle_system.services.membership_service import MembershipService, SYSTEM_ACTOR
from lifecycle_system.services.onboarding_service import resetOnboarding
from lifecycle_system.services.role_service import RoleService
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.members import lock_member
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.enums import (
    Role, MembershipStatus, FinalApproval, MentoringMeetingStatus, ApplicationStatus
)
from models.meeting import MeetingCycle, RecurringMeetingAttendance, MentoringMeeting
from models.member import Member
from models.promotion import PromotionApplication

logger = logging.getLogger(__name__)

RESUME_REASON = "suspension period ended"


def _emptyResult() -> Dict[str, List[Dict[str, Any]]]:
    return {"succeeded": [], "skipped": [], "failed": []}


class ReconciliationService:
    """Cron-triggered, idempotent batch jobs."""

    def __init__(
            self,
            session: Session,
            sideEffects: Optional[SideEffectService] = None,
            clock: Optional[TimeMachine] = None
    ):
        self.session = session
        self.clock = clock or timeMachine
        self.sideEffects = sideEffects or SideEffectService(session, clock=self.clock)
        self.membership = MembershipService(session, self.sideEffects, self.clock)
        self.roles = RoleService(session, self.sideEffects, self.clock)

    @staticmethod
    def authenticate(authToken: Optional[str]) -> None:
        """
        Constant-time check of the cron bearer token.

        Raises:
            AuthenticationError: Missing secret, missing token or mismatch
        """
        secret = Config.get(Config.CRON_SECRET)
        if not secret:
            logger.error("CRON_SECRET is not configured, rejecting job trigger")
            raise AuthenticationError("Cron secret not configured")

        if not authToken or not hmac.compare_digest(str(authToken).encode(), str(secret).encode()):
            logger.warning("Rejected job trigger with invalid token")
            raise AuthenticationError("Invalid cron token")

    # ═══════════════════════════════════════════════════════════════════
    # AUTO-RESUME
    # ═══════════════════════════════════════════════════════════════════

    async def runAutoResumeJob(self, authToken: Optional[str]) -> Dict[str, List[Dict[str, Any]]]:
        """Reactivate members whose suspension window has ended."""
        self.authenticate(authToken)

        now = self.clock.now
        result = _emptyResult()

        memberIds = [
            row.memberID for row in self.session.query(Member.memberID).filter(
                Member.membershipStatus == MembershipStatus.SUSPENDED,
                Member.suspensionEnd.isnot(None),
                Member.suspensionEnd <= now,
                Member.isRetired == False  # noqa: E712
            ).order_by(Member.memberID).all()
        ]

        logger.info(f"Auto-resume job: {len(memberIds)} candidates at {now.isoformat()}")

        for memberId in memberIds:
            try:
                member = lock_member(self.session, memberId)

                # Re-check under lock; another run may have handled it
                if member.membershipStatus != MembershipStatus.SUSPENDED or \
                        member.suspensionEnd is None or member.suspensionEnd > now:
                    self.session.rollback()
                    result["skipped"].append({"memberId": memberId, "reason": "no longer due"})
                    continue

                tasks = self.membership.applyResume(member, RESUME_REASON, SYSTEM_ACTOR)
                self.session.commit()

            except Exception as e:
                self.session.rollback()
                logger.error(f"Auto-resume failed for member {memberId}: {e}", exc_info=True)
                result["failed"].append({"memberId": memberId, "error": str(e)})
                continue

            sideEffects = await self.sideEffects.dispatch(tasks)
            result["succeeded"].append({"memberId": memberId, "sideEffects": sideEffects})

        logger.info(
            f"Auto-resume job finished: succeeded={len(result['succeeded'])}, "
            f"skipped={len(result['skipped'])}, failed={len(result['failed'])}"
        )
        return result

    # ═══════════════════════════════════════════════════════════════════
    # AUTO-DEMOTION
    # ═══════════════════════════════════════════════════════════════════

    def previousMonthRange(self) -> Dict[str, datetime]:
        """[start, end) of the previous calendar month."""
        now = self.clock.now
        end = datetime(now.year, now.month, 1)
        return {"start": end - relativedelta(months=1), "end": end}

    async def runAutoDemotionJob(self, authToken: Optional[str]) -> Dict[str, List[Dict[str, Any]]]:
        """Demote members marked DEMOTED in last month's mandatory meeting cycles."""
        self.authenticate(authToken)

        window = self.previousMonthRange()
        result = _emptyResult()

        rows = self.session.query(RecurringMeetingAttendance, MeetingCycle).join(
            MeetingCycle, RecurringMeetingAttendance.cycleID == MeetingCycle.cycleID
        ).filter(
            MeetingCycle.heldOn >= window["start"],
            MeetingCycle.heldOn < window["end"],
            RecurringMeetingAttendance.finalApproval == FinalApproval.DEMOTED
        ).order_by(MeetingCycle.heldOn, RecurringMeetingAttendance.attendanceID).all()

        # One demotion per member even if flagged in several cycles
        targets = {}
        for attendance, cycle in rows:
            targets.setdefault(attendance.memberID, (attendance.attendanceID, cycle.cycleID, cycle.title, cycle.heldOn))

        logger.info(
            f"Auto-demotion job: {len(targets)} flagged members in cycles "
            f"{window['start']:%Y-%m-%d} .. {window['end']:%Y-%m-%d}"
        )

        for memberId, (attendanceId, cycleId, cycleTitle, heldOn) in targets.items():
            try:
                member = lock_member(self.session, memberId)

                if member.role == Role.BASE:
                    self.session.rollback()
                    result["skipped"].append({"memberId": memberId, "reason": "already BASE"})
                    continue

                fromRole = member.role
                reason = f"Missed mandatory meeting '{cycleTitle}' ({heldOn:%Y-%m-%d}, cycle {cycleId})"

                tasks = self.roles.changeRole(member, Role.BASE, reason, changedBy=SYSTEM_ACTOR, method="demotion")
                resetOnboarding(member, unlock=False)

                purged = self._purgePromotionRecords(memberId)

                attendance = self.session.get(RecurringMeetingAttendance, attendanceId)
                attendance.processedAt = self.clock.now

                self.session.commit()

            except Exception as e:
                self.session.rollback()
                logger.error(f"Auto-demotion failed for member {memberId}: {e}", exc_info=True)
                result["failed"].append({"memberId": memberId, "error": str(e)})
                continue

            sideEffects = await self.sideEffects.dispatch(tasks)
            result["succeeded"].append({
                "memberId": memberId,
                "fromRole": fromRole.value,
                "cycleId": cycleId,
                "purged": purged,
                "sideEffects": sideEffects,
            })

        logger.info(
            f"Auto-demotion job finished: succeeded={len(result['succeeded'])}, "
            f"skipped={len(result['skipped'])}, failed={len(result['failed'])}"
        )
        return result

    def _purgePromotionRecords(self, memberId: int) -> Dict[str, int]:
        """Delete open mentoring meetings and PENDING associate applications."""
        meetings = self.session.query(MentoringMeeting).filter(
            MentoringMeeting.memberID == memberId,
            MentoringMeeting.status.in_([MentoringMeetingStatus.REQUESTED, MentoringMeetingStatus.SCHEDULED])
        ).delete(synchronize_session=False)

        applications = self.session.query(PromotionApplication).filter(
            PromotionApplication.memberID == memberId,
            PromotionApplication.targetRole == Role.ASSOCIATE,
            PromotionApplication.status == ApplicationStatus.PENDING
        ).delete(synchronize_session=False)

        return {"mentoringMeetings": meetings, "applications": applications}
