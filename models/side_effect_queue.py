# models/side_effect_queue.py
"""
Outbox for external calls (billing, identity metadata, notifications).
Rows are written in the same transaction as the state change they accompany.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from models.base import Base, _get_current_time


class SideEffectTask(Base):
    """External side effect task queue."""
    __tablename__ = 'side_effect_queue'

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(40), nullable=False, index=True)  # SideEffectKind value
    memberId = Column(Integer, nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(20), default='pending', index=True)  # pending / done / failed
    createdAt = Column(DateTime, default=_get_current_time, index=True)
    completedAt = Column(DateTime, nullable=True)
    attempts = Column(Integer, default=0)
    lastError = Column(String, nullable=True)

    def __repr__(self):
        return f"<SideEffectTask(kind={self.kind}, memberId={self.memberId}, status={self.status})>"
