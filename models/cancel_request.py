# models/cancel_request.py
"""
CancelRequest - the member's cancellation request, processed later by an admin.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Enum

from models.base import Base, AuditMixin
from models.enums import ContinuationOption, CancelRequestStatus


class CancelRequest(Base, AuditMixin):
    __tablename__ = 'cancel_requests'

    requestID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    reason = Column(String, nullable=False)
    otherReason = Column(String, nullable=True)
    continuationOption = Column(
        Enum(ContinuationOption, native_enum=False, length=16),
        nullable=False
    )

    # Minimum commitment outcome
    isScheduled = Column(Boolean, nullable=False, default=False)
    effectiveDate = Column(DateTime, nullable=True)  # None = end of current billing period

    status = Column(
        Enum(CancelRequestStatus, native_enum=False, length=16),
        nullable=False,
        default=CancelRequestStatus.PENDING
    )
    adminNote = Column(String, nullable=True)
    processedAt = Column(DateTime, nullable=True)
    processedBy = Column(String, nullable=True)

    def __repr__(self):
        return f"<CancelRequest(requestID={self.requestID}, member={self.memberID}, status={self.status})>"
