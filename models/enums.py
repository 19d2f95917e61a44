# models/enums.py
"""
Closed enumerations shared by models and services.
Enum columns store member names (sqlalchemy.Enum, non-native).
"""
from enum import Enum
from typing import Optional


class Role(Enum):
    """Progression roles, ordered BASE < ASSOCIATE < MANAGER."""
    BASE = "BASE"
    ASSOCIATE = "ASSOCIATE"
    MANAGER = "MANAGER"

    @property
    def rank(self) -> int:
        return ROLE_ORDER[self]

    def next(self) -> Optional["Role"]:
        """Role directly above this one, or None at the top."""
        for role, order in ROLE_ORDER.items():
            if order == self.rank + 1:
                return role
        return None


ROLE_ORDER = {
    Role.BASE: 0,
    Role.ASSOCIATE: 1,
    Role.MANAGER: 2,
}


class MembershipStatus(Enum):
    """Billing standing. Exactly one is current per member."""
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    DELINQUENT = "DELINQUENT"
    SUSPENDED = "SUSPENDED"
    CANCELLATION_PENDING = "CANCELLATION_PENDING"
    CANCELED = "CANCELED"


class ApplicationStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ReviewDecision(Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class OnboardingStep(Enum):
    """Self-service checklist unlocked by an approved ASSOCIATE application."""
    COMPLIANCE_TEST = "COMPLIANCE_TEST"
    GUIDANCE = "GUIDANCE"
    MANAGER_CONTACT = "MANAGER_CONTACT"
    PAYOUT_ACCOUNT = "PAYOUT_ACCOUNT"


class MeetingIntent(Enum):
    WILL_ATTEND = "WILL_ATTEND"
    WILL_NOT_ATTEND = "WILL_NOT_ATTEND"
    UNDECIDED = "UNDECIDED"


class FinalApproval(Enum):
    MAINTAINED = "MAINTAINED"
    DEMOTED = "DEMOTED"


class MentoringMeetingStatus(Enum):
    REQUESTED = "REQUESTED"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReferralType(Enum):
    MEMBER = "MEMBER"
    ASSOCIATE = "ASSOCIATE"


class ReferralStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CompensationStatus(Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"


class ContractStatus(Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class ContinuationOption(Enum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class CancelRequestStatus(Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


class SideEffectKind(Enum):
    """External calls routed through the outbox."""
    PAUSE_BILLING = "pause_billing"
    UNPAUSE_BILLING = "unpause_billing"
    SCHEDULE_CANCELLATION = "schedule_cancellation"
    UPDATE_ROLE_METADATA = "update_role_metadata"
    NOTIFY = "notify"
