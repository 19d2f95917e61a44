# lifecycle_system/services/activity_service.py
"""
Activity aggregators - read-only per-member sums and counts.

Every aggregator returns 0 (or False) for a member with no activity.
"""
import asyncio
import logging
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Callable, Dict, List

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from models.activity import MonthlySales, Referral
from models.compensation import Compensation
from models.enums import ReferralType, ReferralStatus, MentoringMeetingStatus, CompensationStatus
from models.meeting import MentoringMeeting
from models.member import Member

logger = logging.getLogger(__name__)


def trailingWindow(now: datetime, months: int) -> Dict[str, Any]:
    """
    Whole months ending with the month before now.

    Example: now in 2024-11, months=6 → 2024-05 .. 2024-10.

    Returns:
        Dict with months (YYYY-MM list, oldest first), start (inclusive)
        and end (exclusive) datetimes
    """
    currentMonthStart = datetime(now.year, now.month, 1)
    start = currentMonthStart - relativedelta(months=months)
    monthList = [(start + relativedelta(months=i)).strftime('%Y-%m') for i in range(months)]

    return {
        "months": monthList,
        "start": start,
        "end": currentMonthStart,
    }


class ActivityService:
    """
    Aggregators feeding the eligibility evaluator.

    Each aggregator runs its query with asyncio.to_thread on a session of its
    own, bound to the same engine as the caller's session. An abandoned
    aggregator closes its session when the query returns.
    """

    def __init__(self, session: Session):
        self.session = session
        self._sessionFactory = sessionmaker(bind=session.get_bind())

    async def _run(self, query: Callable[..., Any], *args) -> Any:
        def _query_in_thread():
            session = self._sessionFactory()
            try:
                return query(session, *args)
            finally:
                session.close()

        return await asyncio.to_thread(_query_in_thread)

    # ═══════════════════════════════════════════════════════════════
    # AGGREGATORS
    # ═══════════════════════════════════════════════════════════════

    async def getSalesVolume(self, memberId: int, months: List[str]) -> Decimal:
        return await self._run(self._salesVolume, memberId, months)

    async def getInsuredCount(self, memberId: int, months: List[str]) -> int:
        return await self._run(self._insuredCount, memberId, months)

    async def countApprovedReferrals(
            self,
            memberId: int,
            referralType: ReferralType,
            start: datetime,
            end: datetime
    ) -> int:
        """Approved referrals of one type made in [start, end)."""
        return await self._run(self._approvedReferrals, memberId, referralType, start, end)

    async def countCompletedMentoringMeetings(self, memberId: int) -> int:
        return await self._run(self._completedMentoringMeetings, memberId)

    async def hasCompletedIntakeSurvey(self, memberId: int) -> bool:
        return await self._run(self._intakeSurveyCompleted, memberId)

    async def getAverageMonthlyReward(self, memberId: int, months: List[str]) -> Decimal:
        """
        Average CONFIRMED/PAID compensation over the months that have a record.

        Returns 0 when there is no record in the window.
        """
        return await self._run(self._averageMonthlyReward, memberId, months)

    # ═══════════════════════════════════════════════════════════════
    # QUERIES (run in worker threads)
    # ═══════════════════════════════════════════════════════════════

    def _salesVolume(self, session: Session, memberId: int, months: List[str]) -> Decimal:
        total = session.query(
            func.coalesce(func.sum(MonthlySales.salesAmount), 0)
        ).filter(
            MonthlySales.memberID == memberId,
            MonthlySales.month.in_(months)
        ).scalar()
        return Decimal(str(total or 0))

    def _insuredCount(self, session: Session, memberId: int, months: List[str]) -> int:
        total = session.query(
            func.coalesce(func.sum(MonthlySales.insuredCount), 0)
        ).filter(
            MonthlySales.memberID == memberId,
            MonthlySales.month.in_(months)
        ).scalar()
        return int(total or 0)

    def _approvedReferrals(
            self,
            session: Session,
            memberId: int,
            referralType: ReferralType,
            start: datetime,
            end: datetime
    ) -> int:
        return session.query(func.count(Referral.referralID)).filter(
            Referral.referrerID == memberId,
            Referral.referralType == referralType,
            Referral.status == ReferralStatus.APPROVED,
            Referral.referredAt >= start,
            Referral.referredAt < end
        ).scalar() or 0

    def _completedMentoringMeetings(self, session: Session, memberId: int) -> int:
        return session.query(func.count(MentoringMeeting.meetingID)).filter(
            MentoringMeeting.memberID == memberId,
            MentoringMeeting.status == MentoringMeetingStatus.COMPLETED
        ).scalar() or 0

    def _intakeSurveyCompleted(self, session: Session, memberId: int) -> bool:
        completedAt = session.query(Member.intakeSurveyCompletedAt).filter(
            Member.memberID == memberId
        ).scalar()
        return completedAt is not None

    def _averageMonthlyReward(self, session: Session, memberId: int, months: List[str]) -> Decimal:
        rows = session.query(Compensation.amount).filter(
            Compensation.memberID == memberId,
            Compensation.month.in_(months),
            Compensation.status.in_([CompensationStatus.CONFIRMED, CompensationStatus.PAID])
        ).all()

        if not rows:
            return Decimal("0")

        total = sum((Decimal(str(r.amount)) for r in rows), Decimal("0"))
        return (total / len(rows)).quantize(Decimal("1"), rounding=ROUND_FLOOR)
