# tests/test_history_listeners.py
"""
Tests for the append-only audit table listeners.

Run:
    pytest tests/test_history_listeners.py -v
"""
from datetime import datetime

import pytest

from lifecycle_system.errors import StateError
from models import MembershipStatus, MembershipStatusHistory, RoleChangeHistory, Role


@pytest.fixture
def status_row(session, make_member):
    member = make_member()
    row = MembershipStatusHistory(
        memberID=member.memberID,
        fromStatus=MembershipStatus.ACTIVE,
        toStatus=MembershipStatus.PAST_DUE,
        reason="payment failed",
        actor="SYSTEM",
        changedAt=datetime(2024, 11, 1)
    )
    session.add(row)
    session.commit()
    return row


@pytest.fixture
def role_row(session, make_member):
    member = make_member(role=Role.ASSOCIATE)
    row = RoleChangeHistory(
        memberID=member.memberID,
        fromRole=Role.BASE,
        toRole=Role.ASSOCIATE,
        reason="onboarding completed",
        changedBy="SYSTEM",
        method="onboarding",
        changedAt=datetime(2024, 11, 1)
    )
    session.add(row)
    session.commit()
    return row


class TestAppendOnlyHistory:

    def test_status_history_update_blocked(self, session, status_row):
        status_row.reason = "rewritten"
        with pytest.raises(StateError):
            session.commit()
        session.rollback()
        assert status_row.reason == "payment failed"

    def test_status_history_delete_blocked(self, session, status_row):
        session.delete(status_row)
        with pytest.raises(StateError):
            session.commit()
        session.rollback()
        assert session.query(MembershipStatusHistory).count() == 1

    def test_role_history_update_blocked(self, session, role_row):
        role_row.toRole = Role.MANAGER
        with pytest.raises(StateError):
            session.commit()
        session.rollback()

    def test_role_history_delete_blocked(self, session, role_row):
        session.delete(role_row)
        with pytest.raises(StateError):
            session.commit()
        session.rollback()
        assert session.query(RoleChangeHistory).count() == 1
