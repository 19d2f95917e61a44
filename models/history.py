# models/history.py
"""
Append-only audit tables.

MembershipStatusHistory: one row per membership status change.
RoleChangeHistory: one row per role mutation (promotion, demotion, admin change).

Rows are never updated or deleted (see models/listeners/history_listeners.py).
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship

from models.base import Base, _get_current_time
from models.enums import Role, MembershipStatus


class MembershipStatusHistory(Base):
    __tablename__ = 'membership_status_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    fromStatus = Column(Enum(MembershipStatus, native_enum=False, length=32), nullable=True)
    toStatus = Column(Enum(MembershipStatus, native_enum=False, length=32), nullable=False)
    reason = Column(String, nullable=False)
    actor = Column(String, nullable=False)  # admin id, member id or "SYSTEM"
    changedAt = Column(DateTime, nullable=False, default=_get_current_time)

    member = relationship('Member', back_populates='statusHistory')

    def __repr__(self):
        return (
            f"<MembershipStatusHistory(member={self.memberID}, "
            f"{self.fromStatus} → {self.toStatus})>"
        )


class RoleChangeHistory(Base):
    __tablename__ = 'role_change_history'

    historyID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    fromRole = Column(Enum(Role, native_enum=False, length=32), nullable=False)
    toRole = Column(Enum(Role, native_enum=False, length=32), nullable=False)
    reason = Column(String, nullable=False)
    changedBy = Column(String, nullable=False)
    # How the change happened:
    # - "application": staff approved a promotion application
    # - "onboarding": deferred ASSOCIATE change after the checklist completed
    # - "demotion": reconciliation job
    method = Column(String, nullable=False)
    changedAt = Column(DateTime, nullable=False, default=_get_current_time)

    def __repr__(self):
        return f"<RoleChangeHistory(member={self.memberID}, {self.fromRole} → {self.toRole})>"
