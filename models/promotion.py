# models/promotion.py
"""
PromotionApplication model - one attempt to move a member up one role.

At most one PENDING application per member. The service enforces this under
a member row lock; the partial unique index is the last line of defense.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Index, text
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin
from models.enums import Role, ApplicationStatus


class PromotionApplication(Base, AuditMixin):
    __tablename__ = 'promotion_applications'

    applicationID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    fromRole = Column(Enum(Role, native_enum=False, length=32), nullable=False)
    targetRole = Column(Enum(Role, native_enum=False, length=32), nullable=False)
    status = Column(
        Enum(ApplicationStatus, native_enum=False, length=16),
        nullable=False,
        default=ApplicationStatus.PENDING
    )

    # Timestamps
    appliedAt = Column(DateTime, nullable=False)
    reviewedAt = Column(DateTime, nullable=True)
    rejectedAt = Column(DateTime, nullable=True)
    completedAt = Column(DateTime, nullable=True)  # deferred role change performed

    # Review
    reviewerID = Column(String, nullable=True)
    reviewNotes = Column(String, nullable=True)
    rejectionReason = Column(String, nullable=True)

    member = relationship('Member', back_populates='applications')

    __table_args__ = (
        Index(
            'uq_promotion_pending_member',
            'memberID',
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'")
        ),
    )

    def __repr__(self):
        return (
            f"<PromotionApplication(applicationID={self.applicationID}, "
            f"member={self.memberID}, target={self.targetRole}, status={self.status})>"
        )
