# models/meeting.py
"""
Mandatory meeting cycles, per-member attendance, and 1:1 mentoring meetings.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin
from models.enums import MeetingIntent, FinalApproval, MentoringMeetingStatus


class MeetingCycle(Base, AuditMixin):
    """One dated, organization-wide mandatory meeting."""
    __tablename__ = 'meeting_cycles'

    cycleID = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    heldOn = Column(DateTime, nullable=False, index=True)
    isRecurring = Column(Boolean, nullable=False, default=True)

    attendances = relationship('RecurringMeetingAttendance', back_populates='cycle')

    def __repr__(self):
        return f"<MeetingCycle(cycleID={self.cycleID}, title={self.title}, heldOn={self.heldOn})>"


class RecurringMeetingAttendance(Base, AuditMixin):
    __tablename__ = 'recurring_meeting_attendance'

    attendanceID = Column(Integer, primary_key=True, autoincrement=True)
    cycleID = Column(Integer, ForeignKey('meeting_cycles.cycleID'), nullable=False, index=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    intent = Column(
        Enum(MeetingIntent, native_enum=False, length=32),
        nullable=False,
        default=MeetingIntent.UNDECIDED
    )

    # Completion markers: either a code entered on-site or the video + survey path
    attendanceCode = Column(String, nullable=True)
    videoWatched = Column(Boolean, nullable=False, default=False)
    surveyCompleted = Column(Boolean, nullable=False, default=False)

    # Staff verdict, None until decided
    finalApproval = Column(Enum(FinalApproval, native_enum=False, length=16), nullable=True)
    processedAt = Column(DateTime, nullable=True)

    cycle = relationship('MeetingCycle', back_populates='attendances')

    __table_args__ = (
        UniqueConstraint('cycleID', 'memberID', name='uq_attendance_cycle_member'),
    )

    @property
    def isCompleted(self) -> bool:
        return bool(self.attendanceCode) or (self.videoWatched and self.surveyCompleted)

    def __repr__(self):
        return (
            f"<RecurringMeetingAttendance(cycle={self.cycleID}, member={self.memberID}, "
            f"finalApproval={self.finalApproval})>"
        )


class MentoringMeeting(Base, AuditMixin):
    """1:1 milestone meeting request between a member and a manager."""
    __tablename__ = 'mentoring_meetings'

    meetingID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    mentorID = Column(Integer, ForeignKey('members.memberID'), nullable=True)

    status = Column(
        Enum(MentoringMeetingStatus, native_enum=False, length=16),
        nullable=False,
        default=MentoringMeetingStatus.REQUESTED
    )
    scheduledAt = Column(DateTime, nullable=True)
    completedAt = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)

    def __repr__(self):
        return f"<MentoringMeeting(meetingID={self.meetingID}, member={self.memberID}, status={self.status})>"
