# lifecycle_system/services/membership_service.py
"""
Membership status state machine.

Every transition:
    1. locks the member row
    2. validates against STATUS_TRANSITIONS
    3. writes status + MembershipStatusHistory + outbox tasks
    4. commits
    5. attempts the outbox tasks

Suspension and cancellation policy:
    - suspension end date must be in the future and at most MAX_SUSPENSION_MONTHS out
    - cancellation inside the minimum commitment period is scheduled for
      joinedAt + MINIMUM_COMMITMENT_MONTHS, otherwise it takes effect at period end
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Dict, Any

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from config import Config
from lifecycle_system.config.statuses import isLegalTransition, CANCELLABLE_STATUSES
from lifecycle_system.errors import ValidationError, StateError, NotFoundError
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.members import lock_member
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine, to_naive_utc
from models.cancel_request import CancelRequest
from models.enums import MembershipStatus, ContinuationOption, CancelRequestStatus, SideEffectKind
from models.history import MembershipStatusHistory
from models.member import Member
from models.side_effect_queue import SideEffectTask

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


def _as_datetime(value) -> datetime:
    """Accept datetime, date or ISO string; return naive UTC datetime."""
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            raise ValidationError(f"Invalid date: {value!r}")
    raise ValidationError(f"Invalid date: {value!r}")


class MembershipService:
    """Service for membership status transitions."""

    def __init__(
            self,
            session: Session,
            sideEffects: Optional[SideEffectService] = None,
            clock: Optional[TimeMachine] = None
    ):
        self.session = session
        self.clock = clock or timeMachine
        self.sideEffects = sideEffects or SideEffectService(session, clock=self.clock)

    # ═══════════════════════════════════════════════════════════════════
    # TRANSITION CORE
    # ═══════════════════════════════════════════════════════════════════

    def transition(self, member: Member, toStatus: MembershipStatus, reason: str, actor: str):
        """
        Move member to toStatus and write the audit row. Does not commit.

        Raises:
            StateError: Transition not in STATUS_TRANSITIONS
        """
        fromStatus = member.membershipStatus
        if not isLegalTransition(fromStatus, toStatus):
            raise StateError(
                f"Illegal status transition {fromStatus.value} → {toStatus.value}",
                details={"memberId": member.memberID, "from": fromStatus.value, "to": toStatus.value}
            )

        now = self.clock.now
        member.membershipStatus = toStatus
        member.membershipStatusReason = reason
        member.membershipStatusChangedAt = now
        member.membershipStatusChangedBy = actor

        self.session.add(MembershipStatusHistory(
            memberID=member.memberID,
            fromStatus=fromStatus,
            toStatus=toStatus,
            reason=reason,
            actor=actor,
            changedAt=now
        ))

        logger.info(
            f"Member {member.memberID} status: {fromStatus.value} → {toStatus.value} "
            f"(reason={reason!r}, actor={actor})"
        )

    async def _commitAndDispatch(self, tasks: List[SideEffectTask]) -> List[Dict[str, Any]]:
        self.session.commit()
        return await self.sideEffects.dispatch(tasks)

    def _billingTask(self, member: Member, kind: SideEffectKind, payload: dict) -> List[SideEffectTask]:
        if not member.billingSubscriptionId:
            logger.warning(f"Member {member.memberID} has no billing subscription, skipping {kind.value}")
            return []
        payload = dict(payload, subscriptionId=member.billingSubscriptionId)
        return [self.sideEffects.enqueue(kind, member.memberID, payload)]

    # ═══════════════════════════════════════════════════════════════════
    # SUSPENSION
    # ═══════════════════════════════════════════════════════════════════

    async def requestSuspension(self, memberId: int, endDate, reason: str, actor: Optional[str] = None) -> Dict[str, Any]:
        """
        Suspend an ACTIVE member until endDate and pause billing.

        Raises:
            ValidationError: endDate not in the future, more than
                MAX_SUSPENSION_MONTHS out, or member not ACTIVE
        """
        endDate = _as_datetime(endDate)
        now = self.clock.now
        maxMonths = Config.get(Config.MAX_SUSPENSION_MONTHS, 3)

        try:
            member = lock_member(self.session, memberId)

            if member.membershipStatus != MembershipStatus.ACTIVE:
                raise ValidationError(
                    f"Suspension requires ACTIVE membership (current: {member.membershipStatus.value})",
                    details={"status": member.membershipStatus.value}
                )
            if endDate <= now:
                raise ValidationError("Suspension end date must be in the future")
            if endDate > now + relativedelta(months=maxMonths):
                raise ValidationError(
                    f"Suspension cannot exceed {maxMonths} months",
                    details={"maxEndDate": (now + relativedelta(months=maxMonths)).isoformat()}
                )

            self.transition(member, MembershipStatus.SUSPENDED, reason or "suspension requested",
                            actor or str(memberId))
            member.suspensionStart = now
            member.suspensionEnd = endDate
            member.reactivatedAt = None

            tasks = self._billingTask(member, SideEffectKind.PAUSE_BILLING, {"resumeAt": endDate.isoformat()})
            tasks.append(self.sideEffects.enqueueNotification(
                memberId, "suspension_started", {"suspensionEndDate": endDate.isoformat()}
            ))
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)

        return {
            "memberId": memberId,
            "status": MembershipStatus.SUSPENDED.value,
            "suspensionEndDate": endDate,
            "sideEffects": sideEffects,
        }

    def applyResume(self, member: Member, reason: str, actor: str) -> List[SideEffectTask]:
        """SUSPENDED → ACTIVE inside the caller's transaction."""
        self.transition(member, MembershipStatus.ACTIVE, reason, actor)
        member.suspensionStart = None
        member.suspensionEnd = None
        member.reactivatedAt = self.clock.now

        tasks = self._billingTask(member, SideEffectKind.UNPAUSE_BILLING, {})
        tasks.append(self.sideEffects.enqueueNotification(member.memberID, "suspension_ended", {"reason": reason}))
        return tasks

    async def resumeSuspension(self, memberId: int, actor: Optional[str] = None) -> Dict[str, Any]:
        """
        Resume a SUSPENDED member early.

        Raises:
            StateError: Member is not SUSPENDED
        """
        try:
            member = lock_member(self.session, memberId)
            if member.membershipStatus != MembershipStatus.SUSPENDED:
                raise StateError(
                    f"Member {memberId} is not SUSPENDED (current: {member.membershipStatus.value})",
                    details={"status": member.membershipStatus.value}
                )
            tasks = self.applyResume(member, "suspension resumed", actor or str(memberId))
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)

        return {
            "memberId": memberId,
            "status": MembershipStatus.ACTIVE.value,
            "reactivatedAt": member.reactivatedAt,
            "sideEffects": sideEffects,
        }

    # ═══════════════════════════════════════════════════════════════════
    # CANCELLATION
    # ═══════════════════════════════════════════════════════════════════

    async def requestCancellation(
            self,
            memberId: int,
            reason: str,
            otherReasonText: Optional[str] = None,
            continuationOption=ContinuationOption.PERMANENT,
            actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Request cancellation, honoring the minimum commitment period.

        Returns:
            Dict with isScheduled and effectiveDate (None = end of billing period)

        Raises:
            ValidationError: Missing reason or unknown continuation option
            StateError: Member not in a cancellable status
        """
        if not reason or not str(reason).strip():
            raise ValidationError("Cancellation reason is required")
        if reason == "other" and not (otherReasonText and otherReasonText.strip()):
            raise ValidationError("otherReasonText is required when reason is 'other'")
        try:
            option = ContinuationOption(continuationOption)
        except ValueError:
            raise ValidationError(
                f"Invalid continuationOption: {continuationOption!r}",
                details={"allowed": [o.value for o in ContinuationOption]}
            )

        now = self.clock.now
        commitmentMonths = Config.get(Config.MINIMUM_COMMITMENT_MONTHS, 6)

        try:
            member = lock_member(self.session, memberId)

            if member.membershipStatus not in CANCELLABLE_STATUSES:
                raise StateError(
                    f"Member {memberId} cannot cancel from {member.membershipStatus.value}",
                    details={"status": member.membershipStatus.value}
                )

            anchor = member.joinedAt + relativedelta(months=commitmentMonths)
            isScheduled = now < anchor
            effectiveDate = anchor if isScheduled else None

            self.transition(member, MembershipStatus.CANCELLATION_PENDING, reason, actor or str(memberId))
            member.cancelRequestedAt = now
            member.scheduledCancelDate = effectiveDate

            cancelRequest = CancelRequest(
                memberID=memberId,
                reason=reason,
                otherReason=otherReasonText,
                continuationOption=option,
                isScheduled=isScheduled,
                effectiveDate=effectiveDate,
                status=CancelRequestStatus.PENDING
            )
            self.session.add(cancelRequest)
            self.session.flush()
            requestId = cancelRequest.requestID

            tasks = self._billingTask(
                member,
                SideEffectKind.SCHEDULE_CANCELLATION,
                {"at": effectiveDate.isoformat() if effectiveDate else None}
            )
            tasks.append(self.sideEffects.enqueueNotification(
                memberId,
                "cancellation_requested",
                {"isScheduled": isScheduled, "effectiveDate": effectiveDate.isoformat() if effectiveDate else None}
            ))
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)

        logger.info(
            f"Cancellation requested: member={memberId}, scheduled={isScheduled}, "
            f"effectiveDate={effectiveDate}"
        )

        return {
            "memberId": memberId,
            "requestId": requestId,
            "isScheduled": isScheduled,
            "effectiveDate": effectiveDate,
            "sideEffects": sideEffects,
        }

    async def recordBillingPeriodEnded(self, memberId: int) -> Dict[str, Any]:
        """
        CANCELLATION_PENDING → CANCELED once the provider ends the subscription.

        Raises:
            StateError: Member is not CANCELLATION_PENDING
        """
        try:
            member = lock_member(self.session, memberId)
            self.transition(member, MembershipStatus.CANCELED, "billing period ended", SYSTEM_ACTOR)
            member.canceledAt = self.clock.now
            tasks = [self.sideEffects.enqueueNotification(memberId, "membership_canceled", {})]
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)
        return {"memberId": memberId, "status": MembershipStatus.CANCELED.value, "sideEffects": sideEffects}

    async def processCancelRequest(
            self,
            requestId: int,
            adminId: str,
            status=CancelRequestStatus.PROCESSED,
            adminNote: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record admin processing of a cancel request. Member status is untouched.

        Raises:
            NotFoundError: Unknown request
            ValidationError: Unknown status value
            StateError: Request already processed
        """
        try:
            newStatus = CancelRequestStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid cancel request status: {status!r}")

        try:
            cancelRequest = self.session.query(CancelRequest).filter(
                CancelRequest.requestID == requestId
            ).with_for_update().first()
            if not cancelRequest:
                raise NotFoundError(f"Cancel request {requestId} not found")
            if cancelRequest.status != CancelRequestStatus.PENDING:
                raise StateError(f"Cancel request {requestId} already {cancelRequest.status.value}")

            cancelRequest.status = newStatus
            cancelRequest.adminNote = adminNote
            if newStatus == CancelRequestStatus.PROCESSED:
                cancelRequest.processedAt = self.clock.now
                cancelRequest.processedBy = adminId

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Cancel request {requestId} → {newStatus.value} by {adminId}")
        return {"requestId": requestId, "status": newStatus.value, "processedAt": cancelRequest.processedAt}

    # ═══════════════════════════════════════════════════════════════════
    # PAYMENT EVENTS
    # ═══════════════════════════════════════════════════════════════════

    async def recordPaymentFailed(self, memberId: int) -> Dict[str, Any]:
        """
        Failed recurring charge.

        ACTIVE → PAST_DUE. Members already behind, or pending cancellation,
        only get delinquentSince stamped (repeated webhooks are no-ops).

        Raises:
            StateError: SUSPENDED or CANCELED member
        """
        try:
            member = lock_member(self.session, memberId)
            status = member.membershipStatus
            tasks = []

            if status in (MembershipStatus.SUSPENDED, MembershipStatus.CANCELED):
                raise StateError(f"Payment failure not applicable to {status.value} member")

            if member.delinquentSince is None:
                member.delinquentSince = self.clock.now

            if status == MembershipStatus.ACTIVE:
                self.transition(member, MembershipStatus.PAST_DUE, "payment failed", SYSTEM_ACTOR)
                tasks.append(self.sideEffects.enqueueNotification(memberId, "payment_failed", {}))
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)
        return {
            "memberId": memberId,
            "status": member.membershipStatus.value,
            "delinquentSince": member.delinquentSince,
            "sideEffects": sideEffects,
        }

    async def recordPaymentSucceeded(self, memberId: int) -> Dict[str, Any]:
        """
        Successful charge.

        PAST_DUE / DELINQUENT → ACTIVE. CANCELLATION_PENDING keeps its status,
        only delinquentSince is cleared.

        Raises:
            StateError: SUSPENDED or CANCELED member
        """
        try:
            member = lock_member(self.session, memberId)
            status = member.membershipStatus
            tasks = []

            if status in (MembershipStatus.SUSPENDED, MembershipStatus.CANCELED):
                raise StateError(f"Payment success not applicable to {status.value} member")

            member.delinquentSince = None

            if status in (MembershipStatus.PAST_DUE, MembershipStatus.DELINQUENT):
                self.transition(member, MembershipStatus.ACTIVE, "payment succeeded", SYSTEM_ACTOR)
                tasks.append(self.sideEffects.enqueueNotification(memberId, "payment_recovered", {}))
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)
        return {"memberId": memberId, "status": member.membershipStatus.value, "sideEffects": sideEffects}

    async def markDelinquent(self, memberId: int, adminId: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Admin decision PAST_DUE → DELINQUENT.

        Raises:
            StateError: Member is not PAST_DUE
        """
        try:
            member = lock_member(self.session, memberId)
            self.transition(member, MembershipStatus.DELINQUENT, reason or "marked delinquent", adminId)
            tasks = [self.sideEffects.enqueueNotification(memberId, "membership_delinquent", {})]
        except Exception:
            self.session.rollback()
            raise

        sideEffects = await self._commitAndDispatch(tasks)
        return {"memberId": memberId, "status": MembershipStatus.DELINQUENT.value, "sideEffects": sideEffects}

    async def listDelinquencyCandidates(self) -> List[Dict[str, Any]]:
        """PAST_DUE members whose first failure is older than DELINQUENCY_GRACE_DAYS."""
        graceDays = Config.get(Config.DELINQUENCY_GRACE_DAYS, 7)
        cutoff = self.clock.now - timedelta(days=graceDays)

        members = self.session.query(Member).filter(
            Member.membershipStatus == MembershipStatus.PAST_DUE,
            Member.delinquentSince.isnot(None),
            Member.delinquentSince <= cutoff,
            Member.isRetired == False  # noqa: E712
        ).order_by(Member.delinquentSince).all()

        return [
            {
                "memberId": m.memberID,
                "email": m.email,
                "delinquentSince": m.delinquentSince,
                "daysPastDue": (self.clock.now - m.delinquentSince).days,
            }
            for m in members
        ]

    async def getStatusHistory(self, memberId: int) -> List[Dict[str, Any]]:
        rows = self.session.query(MembershipStatusHistory).filter(
            MembershipStatusHistory.memberID == memberId
        ).order_by(MembershipStatusHistory.historyID).all()

        return [
            {
                "fromStatus": r.fromStatus.value if r.fromStatus else None,
                "toStatus": r.toStatus.value,
                "reason": r.reason,
                "actor": r.actor,
                "changedAt": r.changedAt,
            }
            for r in rows
        ]
