# models/compensation.py
"""
Compensation - one reward record per member per calendar month.
Locked rows are immutable until an admin unlocks them.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Enum, DECIMAL, UniqueConstraint

from models.base import Base, AuditMixin
from models.enums import Role, CompensationStatus


class Compensation(Base, AuditMixin):
    __tablename__ = 'compensations'

    compensationID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    month = Column(String(7), nullable=False, index=True)  # YYYY-MM

    # Breakdown
    referralReward = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    contractReward = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    bonus = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    deduction = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    amount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))  # derived total

    status = Column(
        Enum(CompensationStatus, native_enum=False, length=16),
        nullable=False,
        default=CompensationStatus.PENDING
    )
    earnedAsRole = Column(Enum(Role, native_enum=False, length=32), nullable=True)

    # Locking
    isLocked = Column(Boolean, nullable=False, default=False)
    lockedAt = Column(DateTime, nullable=True)
    unlockedAt = Column(DateTime, nullable=True)
    unlockedBy = Column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint('memberID', 'month', name='uq_compensation_member_month'),
    )

    def recalculateAmount(self):
        """amount = referralReward + contractReward + bonus - deduction"""
        self.amount = (
            Decimal(self.referralReward or 0)
            + Decimal(self.contractReward or 0)
            + Decimal(self.bonus or 0)
            - Decimal(self.deduction or 0)
        )
        return self.amount

    def __repr__(self):
        return (
            f"<Compensation(member={self.memberID}, month={self.month}, "
            f"amount={self.amount}, status={self.status})>"
        )
