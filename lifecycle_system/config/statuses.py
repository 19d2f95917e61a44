# lifecycle_system/config/statuses.py
"""
Legal membership status transitions.

Every status change the engine makes is checked against STATUS_TRANSITIONS
before anything is written.
"""
from typing import Dict, FrozenSet

from models.enums import MembershipStatus

S = MembershipStatus

STATUS_TRANSITIONS: Dict[MembershipStatus, FrozenSet[MembershipStatus]] = {
    S.ACTIVE: frozenset({S.PAST_DUE, S.SUSPENDED, S.CANCELLATION_PENDING}),
    S.PAST_DUE: frozenset({S.ACTIVE, S.DELINQUENT, S.CANCELLATION_PENDING}),
    S.DELINQUENT: frozenset({S.ACTIVE}),
    S.SUSPENDED: frozenset({S.ACTIVE}),
    S.CANCELLATION_PENDING: frozenset({S.CANCELED}),
    S.CANCELED: frozenset(),
}

# Statuses from which a cancellation request is accepted
CANCELLABLE_STATUSES = frozenset({S.ACTIVE, S.PAST_DUE})


def isLegalTransition(fromStatus: MembershipStatus, toStatus: MembershipStatus) -> bool:
    return toStatus in STATUS_TRANSITIONS.get(fromStatus, frozenset())
