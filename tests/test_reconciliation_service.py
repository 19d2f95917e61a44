# tests/test_reconciliation_service.py
"""
Tests for the cron-triggered reconciliation jobs.

Run:
    pytest tests/test_reconciliation_service.py -v
"""
from datetime import datetime, timedelta

import pytest

from lifecycle_system.errors import AuthenticationError
from lifecycle_system.services.reconciliation_service import ReconciliationService
from models import (
    Role, MembershipStatus, MeetingCycle, RecurringMeetingAttendance, FinalApproval,
    MentoringMeeting, MentoringMeetingStatus, RoleChangeHistory, MembershipStatusHistory
)

from conftest import NOW, CRON_SECRET


@pytest.fixture
def service(session, side_effects, clock):
    return ReconciliationService(session, side_effects, clock)


def add_cycle(session, heldOn, verdicts):
    """verdicts: {memberId: FinalApproval or None}"""
    cycle = MeetingCycle(title="Monthly all-hands", heldOn=heldOn)
    session.add(cycle)
    session.flush()
    for memberId, verdict in verdicts.items():
        session.add(RecurringMeetingAttendance(cycleID=cycle.cycleID, memberID=memberId, finalApproval=verdict))
    session.commit()
    return cycle


# =============================================================================
# TEST CLASS: authentication
# =============================================================================

class TestAuthentication:

    @pytest.mark.asyncio
    async def test_wrong_token(self, service):
        with pytest.raises(AuthenticationError):
            await service.runAutoResumeJob("nope")

    @pytest.mark.asyncio
    async def test_missing_token(self, service):
        with pytest.raises(AuthenticationError):
            await service.runAutoDemotionJob(None)

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self, service, config):
        config.set(config.CRON_SECRET, None)
        with pytest.raises(AuthenticationError):
            await service.runAutoResumeJob(CRON_SECRET)


# =============================================================================
# TEST CLASS: auto-resume
# =============================================================================

class TestAutoResume:

    @pytest.mark.asyncio
    async def test_resumes_only_due_members(self, service, make_member, billing):
        due = make_member(
            membershipStatus=MembershipStatus.SUSPENDED,
            suspensionStart=NOW - timedelta(days=30),
            suspensionEnd=NOW - timedelta(hours=1)
        )
        not_due = make_member(
            membershipStatus=MembershipStatus.SUSPENDED,
            suspensionStart=NOW - timedelta(days=2),
            suspensionEnd=NOW + timedelta(days=5)
        )

        result = await service.runAutoResumeJob(CRON_SECRET)

        assert [s["memberId"] for s in result["succeeded"]] == [due.memberID]
        assert result["failed"] == []
        assert due.membershipStatus == MembershipStatus.ACTIVE
        assert due.reactivatedAt == NOW
        assert not_due.membershipStatus == MembershipStatus.SUSPENDED
        assert billing.calls == [("unpause_billing", due.billingSubscriptionId)]

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, service, make_member, session):
        make_member(
            membershipStatus=MembershipStatus.SUSPENDED,
            suspensionEnd=NOW - timedelta(days=1)
        )

        await service.runAutoResumeJob(CRON_SECRET)
        second = await service.runAutoResumeJob(CRON_SECRET)

        assert second == {"succeeded": [], "skipped": [], "failed": []}
        assert session.query(MembershipStatusHistory).count() == 1

    @pytest.mark.asyncio
    async def test_history_reason(self, service, make_member, session):
        make_member(membershipStatus=MembershipStatus.SUSPENDED, suspensionEnd=NOW)

        await service.runAutoResumeJob(CRON_SECRET)

        row = session.query(MembershipStatusHistory).one()
        assert (row.fromStatus, row.toStatus) == (MembershipStatus.SUSPENDED, MembershipStatus.ACTIVE)
        assert row.reason == "suspension period ended"
        assert row.actor == "SYSTEM"


# =============================================================================
# TEST CLASS: auto-demotion
# =============================================================================

class TestAutoDemotion:

    @pytest.mark.asyncio
    async def test_scenario_e_only_demoted_member_changes(self, service, make_member, session, identity):
        """
        TEST: DEMOTED member → BASE; MAINTAINED member untouched and absent from succeeded.
        """
        demoted = make_member(role=Role.ASSOCIATE)
        maintained = make_member(role=Role.ASSOCIATE)
        cycle = add_cycle(session, datetime(2024, 10, 10), {
            demoted.memberID: FinalApproval.DEMOTED,
            maintained.memberID: FinalApproval.MAINTAINED,
        })

        result = await service.runAutoDemotionJob(CRON_SECRET)

        assert [s["memberId"] for s in result["succeeded"]] == [demoted.memberID]
        assert result["succeeded"][0]["fromRole"] == "ASSOCIATE"
        assert result["succeeded"][0]["cycleId"] == cycle.cycleID
        assert demoted.role == Role.BASE
        assert maintained.role == Role.ASSOCIATE
        assert identity.calls == [(demoted.externalID, "BASE")]

        history = session.query(RoleChangeHistory).one()
        assert history.method == "demotion"
        assert str(cycle.cycleID) in history.reason

        attendance = session.query(RecurringMeetingAttendance).filter_by(memberID=demoted.memberID).one()
        assert attendance.processedAt == NOW

    @pytest.mark.asyncio
    async def test_demotion_resets_progress(self, service, make_member, session):
        member = make_member(
            role=Role.MANAGER,
            rangeNumber=2,
            onboardingUnlocked=True,
            onboardingCompleted=True,
            guidanceCompleted=True
        )
        session.add_all([
            MentoringMeeting(memberID=member.memberID, status=MentoringMeetingStatus.REQUESTED),
            MentoringMeeting(memberID=member.memberID, status=MentoringMeetingStatus.COMPLETED),
        ])
        session.commit()
        add_cycle(session, datetime(2024, 10, 3), {member.memberID: FinalApproval.DEMOTED})

        result = await service.runAutoDemotionJob(CRON_SECRET)

        assert result["succeeded"][0]["purged"] == {"mentoringMeetings": 1, "applications": 0}
        assert member.role == Role.BASE
        assert member.rangeNumber == 1
        assert member.onboardingUnlocked is False
        assert member.onboardingCompleted is False
        assert member.guidanceCompleted is False
        remaining = session.query(MentoringMeeting).filter_by(memberID=member.memberID).all()
        assert [m.status for m in remaining] == [MentoringMeetingStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_base_member_is_skipped(self, service, make_member, session):
        member = make_member(role=Role.BASE)
        add_cycle(session, datetime(2024, 10, 10), {member.memberID: FinalApproval.DEMOTED})

        result = await service.runAutoDemotionJob(CRON_SECRET)

        assert result["succeeded"] == []
        assert result["skipped"] == [{"memberId": member.memberID, "reason": "already BASE"}]
        assert session.query(RoleChangeHistory).count() == 0

    @pytest.mark.asyncio
    async def test_only_previous_month_cycles(self, service, make_member, session):
        current = make_member(role=Role.ASSOCIATE)
        older = make_member(role=Role.ASSOCIATE)
        add_cycle(session, datetime(2024, 11, 2), {current.memberID: FinalApproval.DEMOTED})
        add_cycle(session, datetime(2024, 9, 30), {older.memberID: FinalApproval.DEMOTED})

        result = await service.runAutoDemotionJob(CRON_SECRET)

        assert result == {"succeeded": [], "skipped": [], "failed": []}
        assert current.role == Role.ASSOCIATE
        assert older.role == Role.ASSOCIATE

    @pytest.mark.asyncio
    async def test_rerun_skips_demoted_member(self, service, make_member, session):
        member = make_member(role=Role.ASSOCIATE)
        add_cycle(session, datetime(2024, 10, 10), {member.memberID: FinalApproval.DEMOTED})

        await service.runAutoDemotionJob(CRON_SECRET)
        second = await service.runAutoDemotionJob(CRON_SECRET)

        assert second["succeeded"] == []
        assert second["skipped"][0]["memberId"] == member.memberID
        assert session.query(RoleChangeHistory).count() == 1

    @pytest.mark.asyncio
    async def test_flagged_in_two_cycles_demoted_once(self, service, make_member, session):
        member = make_member(role=Role.ASSOCIATE)
        add_cycle(session, datetime(2024, 10, 3), {member.memberID: FinalApproval.DEMOTED})
        add_cycle(session, datetime(2024, 10, 17), {member.memberID: FinalApproval.DEMOTED})

        result = await service.runAutoDemotionJob(CRON_SECRET)

        assert len(result["succeeded"]) == 1
        assert session.query(RoleChangeHistory).count() == 1
