"""
Database models for the lifecycle engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Enumerations
from models.enums import (
    Role,
    MembershipStatus,
    ApplicationStatus,
    ReviewDecision,
    OnboardingStep,
    MeetingIntent,
    FinalApproval,
    MentoringMeetingStatus,
    ReferralType,
    ReferralStatus,
    CompensationStatus,
    ContractStatus,
    ContinuationOption,
    CancelRequestStatus,
    SideEffectKind,
)

# Core models
from models.member import Member
from models.history import MembershipStatusHistory, RoleChangeHistory
from models.promotion import PromotionApplication
from models.meeting import MeetingCycle, RecurringMeetingAttendance, MentoringMeeting
from models.activity import MonthlySales, Referral, Contract
from models.compensation import Compensation
from models.cancel_request import CancelRequest
from models.notification import Notification
from models.side_effect_queue import SideEffectTask

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Enums
    'Role',
    'MembershipStatus',
    'ApplicationStatus',
    'ReviewDecision',
    'OnboardingStep',
    'MeetingIntent',
    'FinalApproval',
    'MentoringMeetingStatus',
    'ReferralType',
    'ReferralStatus',
    'CompensationStatus',
    'ContractStatus',
    'ContinuationOption',
    'CancelRequestStatus',
    'SideEffectKind',

    # Core
    'Member',
    'MembershipStatusHistory',
    'RoleChangeHistory',
    'PromotionApplication',
    'MeetingCycle',
    'RecurringMeetingAttendance',
    'MentoringMeeting',
    'MonthlySales',
    'Referral',
    'Contract',
    'Compensation',
    'CancelRequest',
    'Notification',
    'SideEffectTask',

    # Listeners
    'register_all_listeners',
]
