# models/activity.py
"""
Activity records read by the eligibility aggregators and the reward pass.

MonthlySales: imported sales figures per member per month.
Referral: a member bringing in another member or associate.
Contract: signed insurance contract carrying a reward amount.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Enum, DECIMAL, UniqueConstraint

from models.base import Base, AuditMixin
from models.enums import ReferralType, ReferralStatus, ContractStatus


class MonthlySales(Base, AuditMixin):
    __tablename__ = 'monthly_sales'

    salesID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    month = Column(String(7), nullable=False, index=True)  # YYYY-MM

    salesAmount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    insuredCount = Column(Integer, nullable=False, default=0)
    isLocked = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint('memberID', 'month', name='uq_monthly_sales_member_month'),
    )

    def __repr__(self):
        return f"<MonthlySales(member={self.memberID}, month={self.month}, amount={self.salesAmount})>"


class Referral(Base, AuditMixin):
    __tablename__ = 'referrals'

    referralID = Column(Integer, primary_key=True, autoincrement=True)
    referrerID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    referredID = Column(Integer, ForeignKey('members.memberID'), nullable=True)

    referralType = Column(Enum(ReferralType, native_enum=False, length=16), nullable=False)
    status = Column(
        Enum(ReferralStatus, native_enum=False, length=16),
        nullable=False,
        default=ReferralStatus.PENDING
    )
    referredAt = Column(DateTime, nullable=False, index=True)
    approvedAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<Referral(referralID={self.referralID}, referrer={self.referrerID}, "
            f"type={self.referralType}, status={self.status})>"
        )


class Contract(Base, AuditMixin):
    __tablename__ = 'contracts'

    contractID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    policyNumber = Column(String, nullable=True)
    signedAt = Column(DateTime, nullable=False, index=True)
    rewardAmount = Column(DECIMAL(14, 2), nullable=False, default=Decimal("0"))
    status = Column(
        Enum(ContractStatus, native_enum=False, length=16),
        nullable=False,
        default=ContractStatus.ACTIVE
    )

    def __repr__(self):
        return f"<Contract(contractID={self.contractID}, member={self.memberID}, reward={self.rewardAmount})>"
