# models/member.py
"""
Member model - identity, role, membership standing and onboarding flags.
Members with financial history are soft-retired, never deleted.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, _get_current_time
from models.enums import Role, MembershipStatus


class Member(Base, AuditMixin):
    __tablename__ = 'members'

    # Primary key
    memberID = Column(Integer, primary_key=True, autoincrement=True)

    # Identity (authentication lives in the identity provider)
    externalID = Column(String, nullable=True, unique=True)  # identity provider user id
    email = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)

    # Progression
    role = Column(Enum(Role, native_enum=False, length=32), nullable=False, default=Role.BASE)
    rangeNumber = Column(Integer, nullable=False, default=1)  # manager sub-rank 1..3

    # Membership standing (exactly one current value)
    membershipStatus = Column(
        Enum(MembershipStatus, native_enum=False, length=32),
        nullable=False,
        default=MembershipStatus.ACTIVE,
        index=True
    )
    membershipStatusReason = Column(String, nullable=True)
    membershipStatusChangedAt = Column(DateTime, nullable=True)
    membershipStatusChangedBy = Column(String, nullable=True)  # admin id or "SYSTEM"

    # Minimum commitment anchor
    joinedAt = Column(DateTime, nullable=False, default=_get_current_time)

    # Suspension window
    suspensionStart = Column(DateTime, nullable=True)
    suspensionEnd = Column(DateTime, nullable=True, index=True)
    reactivatedAt = Column(DateTime, nullable=True)

    # Payment failures
    delinquentSince = Column(DateTime, nullable=True)

    # Cancellation bookkeeping
    cancelRequestedAt = Column(DateTime, nullable=True)
    scheduledCancelDate = Column(DateTime, nullable=True)
    canceledAt = Column(DateTime, nullable=True)

    # Billing provider reference
    billingSubscriptionId = Column(String, nullable=True)

    # Associate milestones (eligibility input)
    intakeSurveyCompletedAt = Column(DateTime, nullable=True)

    # Onboarding checklist (unlocked by an approved ASSOCIATE application)
    onboardingUnlocked = Column(Boolean, nullable=False, default=False)
    complianceTestPassed = Column(Boolean, nullable=False, default=False)
    complianceTestPassedAt = Column(DateTime, nullable=True)
    guidanceCompleted = Column(Boolean, nullable=False, default=False)
    managerContactConfirmed = Column(Boolean, nullable=False, default=False)
    payoutAccountRegistered = Column(Boolean, nullable=False, default=False)
    onboardingCompleted = Column(Boolean, nullable=False, default=False)
    onboardingCompletedAt = Column(DateTime, nullable=True)

    # Soft retirement
    isRetired = Column(Boolean, nullable=False, default=False)
    retiredAt = Column(DateTime, nullable=True)

    # Relationships
    statusHistory = relationship(
        'MembershipStatusHistory',
        back_populates='member',
        order_by='MembershipStatusHistory.historyID'
    )
    applications = relationship('PromotionApplication', back_populates='member')

    @property
    def intakeSurveyCompleted(self) -> bool:
        return self.intakeSurveyCompletedAt is not None

    def __repr__(self):
        return (
            f"<Member(memberID={self.memberID}, role={self.role}, "
            f"status={self.membershipStatus})>"
        )
