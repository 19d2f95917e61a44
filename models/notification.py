# models/notification.py
"""
Notification model - in-app notifications written by the dispatcher.
Delivery to email/chat channels happens elsewhere.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from models.base import Base, AuditMixin


class Notification(Base, AuditMixin):
    __tablename__ = 'notifications'

    notificationID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    templateKind = Column(String, nullable=False)  # e.g. 'suspension_started', 'promotion_approved'
    context = Column(JSON, nullable=False, default=dict)
    status = Column(String, default="pending")  # pending, read
    readAt = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<Notification(notificationID={self.notificationID}, member={self.memberID}, kind={self.templateKind})>"
