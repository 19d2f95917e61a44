# lifecycle_system/services/compensation_service.py
"""
Monthly compensation records.

Reward calculation per member per month:
    contractReward = SUM(Contract.rewardAmount) for ACTIVE contracts signed that month
    referralReward, bonus, deduction = 0 (set through the import path)
    amount = referralReward + contractReward + bonus - deduction

Locked rows are immutable (see models/listeners/history_listeners.py) until
an admin unlocks them.
"""
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from lifecycle_system.errors import ValidationError, StateError
from lifecycle_system.utils.members import get_member
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.activity import Contract
from models.compensation import Compensation
from models.enums import Role, ContractStatus, CompensationStatus
from models.member import Member

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')

BREAKDOWN_FIELDS = ("referralReward", "contractReward", "bonus", "deduction")


def validateMonth(month: str) -> str:
    if not month or not MONTH_PATTERN.match(str(month)):
        raise ValidationError(f"Invalid month {month!r}, expected YYYY-MM")
    return month


def monthRange(month: str) -> Dict[str, datetime]:
    """[start, end) datetimes of a YYYY-MM month."""
    start = datetime.strptime(month, '%Y-%m')
    return {"start": start, "end": start + relativedelta(months=1)}


class CompensationService:
    """Service for generating, importing and locking compensation rows."""

    def __init__(self, session: Session, clock: Optional[TimeMachine] = None):
        self.session = session
        self.clock = clock or timeMachine

    async def calculateBreakdown(self, memberId: int, month: str) -> Dict[str, Decimal]:
        bounds = monthRange(month)

        contractReward = self.session.query(
            func.coalesce(func.sum(Contract.rewardAmount), 0)
        ).filter(
            Contract.memberID == memberId,
            Contract.status == ContractStatus.ACTIVE,
            Contract.signedAt >= bounds["start"],
            Contract.signedAt < bounds["end"]
        ).scalar()

        return {
            "referralReward": Decimal("0"),
            "contractReward": Decimal(str(contractReward or 0)),
            "bonus": Decimal("0"),
            "deduction": Decimal("0"),
        }

    async def generateMonthlyCompensation(self, month: str, memberIds: Optional[List[int]] = None) -> Dict[str, Any]:
        """
        Create PENDING compensation rows for ASSOCIATE and MANAGER members.

        Existing rows and zero totals are skipped. Each member is its own
        transaction.

        Returns:
            Dict with month, succeeded, skipped and failed lists
        """
        validateMonth(month)

        query = self.session.query(Member).filter(
            Member.role.in_([Role.ASSOCIATE, Role.MANAGER]),
            Member.isRetired == False  # noqa: E712
        )
        if memberIds:
            query = query.filter(Member.memberID.in_(memberIds))
        members = query.order_by(Member.memberID).all()

        result = {"month": month, "succeeded": [], "skipped": [], "failed": []}

        for member in members:
            memberId = member.memberID
            try:
                existing = self.session.query(Compensation).filter_by(memberID=memberId, month=month).first()
                if existing:
                    result["skipped"].append({"memberId": memberId, "reason": "already exists"})
                    continue

                breakdown = await self.calculateBreakdown(memberId, month)
                compensation = Compensation(
                    memberID=memberId,
                    month=month,
                    status=CompensationStatus.PENDING,
                    earnedAsRole=member.role,
                    **breakdown
                )
                total = compensation.recalculateAmount()

                if total == 0:
                    result["skipped"].append({"memberId": memberId, "reason": "zero total"})
                    continue

                self.session.add(compensation)
                self.session.commit()

                result["succeeded"].append({
                    "memberId": memberId,
                    "compensationId": compensation.compensationID,
                    "amount": total,
                })

            except Exception as e:
                self.session.rollback()
                logger.error(f"Compensation generation failed for member {memberId}, month {month}: {e}", exc_info=True)
                result["failed"].append({"memberId": memberId, "error": str(e)})

        logger.info(
            f"Compensation {month}: succeeded={len(result['succeeded'])}, "
            f"skipped={len(result['skipped'])}, failed={len(result['failed'])}"
        )
        return result

    async def upsertCompensation(
            self,
            memberId: int,
            month: str,
            breakdown: Dict[str, Any],
            status=None
    ) -> Dict[str, Any]:
        """
        Create or replace a compensation row from imported figures.

        Raises:
            ValidationError: Bad month or non-numeric breakdown value
            StateError: Row is locked
        """
        validateMonth(month)

        values = {}
        for field in BREAKDOWN_FIELDS:
            try:
                values[field] = Decimal(str(breakdown.get(field, 0) or 0))
            except (ArithmeticError, ValueError):
                raise ValidationError(f"Invalid {field}: {breakdown.get(field)!r}")

        newStatus = None
        if status is not None:
            try:
                newStatus = CompensationStatus(str(status).upper())
            except ValueError:
                raise ValidationError(f"Invalid compensation status: {status!r}")

        try:
            member = get_member(self.session, memberId)
            compensation = self.session.query(Compensation).filter_by(
                memberID=memberId, month=month
            ).with_for_update().first()

            if compensation and compensation.isLocked:
                raise StateError(
                    f"Compensation {compensation.compensationID} ({month}) is locked",
                    details={"compensationId": compensation.compensationID}
                )

            created = compensation is None
            if created:
                compensation = Compensation(memberID=memberId, month=month, earnedAsRole=member.role)
                self.session.add(compensation)

            for field, value in values.items():
                setattr(compensation, field, value)
            compensation.recalculateAmount()
            if newStatus:
                compensation.status = newStatus

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"Compensation {'created' if created else 'updated'}: member={memberId}, "
            f"month={month}, amount={compensation.amount}"
        )
        return {
            "compensationId": compensation.compensationID,
            "created": created,
            "amount": compensation.amount,
            "status": compensation.status.value,
        }

    async def lockCompensations(self, compensationIds: List[int]) -> Dict[str, int]:
        now = self.clock.now
        try:
            rows = self.session.query(Compensation).filter(
                Compensation.compensationID.in_(compensationIds),
                Compensation.isLocked == False  # noqa: E712
            ).all()
            for row in rows:
                row.isLocked = True
                row.lockedAt = now
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Locked {len(rows)} compensation rows")
        return {"locked": len(rows)}

    async def unlockCompensations(self, compensationIds: List[int], adminId: str) -> Dict[str, int]:
        now = self.clock.now
        try:
            rows = self.session.query(Compensation).filter(
                Compensation.compensationID.in_(compensationIds),
                Compensation.isLocked == True  # noqa: E712
            ).all()
            for row in rows:
                row.isLocked = False
                row.unlockedAt = now
                row.unlockedBy = adminId
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Unlocked {len(rows)} compensation rows by {adminId}")
        return {"unlocked": len(rows)}
