# tests/test_promotion_service.py
"""
Tests for promotion applications and their review.

Run:
    pytest tests/test_promotion_service.py -v
"""
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from lifecycle_system.errors import ValidationError, StateError, ConflictError, NotFoundError
from lifecycle_system.services.eligibility_service import EligibilityService
from lifecycle_system.services.onboarding_service import OnboardingService
from lifecycle_system.services.promotion_service import PromotionService
from models import (
    Role, MembershipStatus, ApplicationStatus, PromotionApplication, RoleChangeHistory
)

from conftest import NOW

ZERO_THRESHOLDS = {"salesVolume": {"1": 0}, "insuredCount": 0, "memberReferrals": 0, "associateReferrals": 0}


@pytest.fixture
def service(session, side_effects, clock):
    return PromotionService(
        session,
        eligibility=EligibilityService(session, clock=clock),
        sideEffects=side_effects,
        clock=clock
    )


# =============================================================================
# TEST CLASS: submission
# =============================================================================

class TestSubmission:

    @pytest.mark.asyncio
    async def test_submit_associate_application(self, service, make_member, session, notifier):
        member = make_member()

        applicationId = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        application = session.get(PromotionApplication, applicationId)
        assert application.status == ApplicationStatus.PENDING
        assert application.fromRole == Role.BASE
        assert application.targetRole == Role.ASSOCIATE
        assert application.appliedAt == NOW
        assert notifier.kinds(member.memberID) == ["promotion_applied"]

    @pytest.mark.asyncio
    async def test_second_pending_application_conflicts(self, service, make_member, session):
        member = make_member()
        await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        with pytest.raises(ConflictError):
            await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        assert session.query(PromotionApplication).count() == 1

    @pytest.mark.asyncio
    async def test_must_target_next_role(self, service, make_member):
        member = make_member()
        with pytest.raises(ValidationError):
            await service.submitPromotionApplication(member.memberID, "MANAGER")

    @pytest.mark.asyncio
    async def test_manager_cannot_apply(self, service, make_member):
        member = make_member(role=Role.MANAGER)
        with pytest.raises(ValidationError):
            await service.submitPromotionApplication(member.memberID, "MANAGER")

    @pytest.mark.asyncio
    async def test_requires_active_membership(self, service, make_member):
        member = make_member(membershipStatus=MembershipStatus.PAST_DUE)
        with pytest.raises(StateError):
            await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

    @pytest.mark.asyncio
    async def test_manager_application_requires_eligibility(self, service, make_member, session):
        member = make_member(role=Role.ASSOCIATE)

        with pytest.raises(ValidationError) as exc_info:
            await service.submitPromotionApplication(member.memberID, "MANAGER")

        assert exc_info.value.details["eligibility"]["isEligible"] is False
        assert session.query(PromotionApplication).count() == 0

    def test_database_rejects_second_pending_row(self, session, make_member):
        """
        TEST: Partial unique index holds even if the service check is bypassed.
        """
        member = make_member()
        for _ in range(2):
            session.add(PromotionApplication(
                memberID=member.memberID,
                fromRole=Role.BASE,
                targetRole=Role.ASSOCIATE,
                status=ApplicationStatus.PENDING,
                appliedAt=NOW
            ))

        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    @pytest.mark.asyncio
    async def test_rejected_application_allows_resubmission(self, service, make_member):
        member = make_member()
        first = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")
        await service.reviewPromotionApplication(first, "REJECTED", "admin-1", "missing survey")

        second = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        assert second != first

    @pytest.mark.asyncio
    async def test_approved_application_in_onboarding_blocks_resubmission(
            self, service, make_member, session, side_effects, clock):
        """
        TEST: While an approved ASSOCIATE application waits on onboarding, a new one
        is refused and the checklist progress survives.
        """
        member = make_member()
        first = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")
        await service.reviewPromotionApplication(first, "APPROVED", "admin-1")

        onboarding = OnboardingService(session, side_effects, clock)
        for step in ("COMPLIANCE_TEST", "GUIDANCE", "MANAGER_CONTACT"):
            await onboarding.completeOnboardingStep(member.memberID, step)

        with pytest.raises(ConflictError) as exc:
            await service.submitPromotionApplication(member.memberID, "ASSOCIATE")
        session.rollback()

        assert exc.value.details == {"applicationId": first}
        assert session.query(PromotionApplication).filter_by(memberID=member.memberID).count() == 1
        status = await onboarding.getOnboardingStatus(member.memberID)
        assert status["steps"] == {
            "COMPLIANCE_TEST": True,
            "GUIDANCE": True,
            "MANAGER_CONTACT": True,
            "PAYOUT_ACCOUNT": False,
        }


# =============================================================================
# TEST CLASS: review
# =============================================================================

class TestReview:

    @pytest.mark.asyncio
    async def test_rejection_requires_reason(self, service, make_member, session):
        member = make_member()
        applicationId = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        with pytest.raises(ValidationError):
            await service.reviewPromotionApplication(applicationId, "REJECTED", "admin-1", "   ")

        assert session.get(PromotionApplication, applicationId).status == ApplicationStatus.PENDING

    @pytest.mark.asyncio
    async def test_rejection_is_terminal(self, service, make_member, session):
        member = make_member()
        applicationId = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        result = await service.reviewPromotionApplication(applicationId, "rejected", "admin-1", "too early")

        application = session.get(PromotionApplication, applicationId)
        assert result["status"] == "REJECTED"
        assert application.rejectionReason == "too early"
        assert application.rejectedAt == NOW
        assert application.reviewerID == "admin-1"

        with pytest.raises(StateError):
            await service.reviewPromotionApplication(applicationId, "APPROVED", "admin-2")

    @pytest.mark.asyncio
    async def test_associate_approval_unlocks_onboarding_only(self, service, make_member, identity):
        """
        TEST: ASSOCIATE approval unlocks the checklist; role stays BASE.
        """
        member = make_member()
        applicationId = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")

        result = await service.reviewPromotionApplication(applicationId, "APPROVED", "admin-1")

        assert result["roleChanged"] is False
        assert result["onboardingUnlocked"] is True
        assert member.role == Role.BASE
        assert member.onboardingUnlocked is True
        assert identity.calls == []

    @pytest.mark.asyncio
    async def test_manager_approval_changes_role_immediately(self, service, make_member, session, identity, config):
        config.set(config.MANAGER_THRESHOLDS, ZERO_THRESHOLDS)
        member = make_member(role=Role.ASSOCIATE)
        applicationId = await service.submitPromotionApplication(member.memberID, "MANAGER")

        result = await service.reviewPromotionApplication(applicationId, "APPROVED", "admin-1")

        assert result["roleChanged"] is True
        assert member.role == Role.MANAGER
        assert session.get(PromotionApplication, applicationId).completedAt == NOW
        assert identity.calls == [(member.externalID, "MANAGER")]

        history = session.query(RoleChangeHistory).one()
        assert (history.fromRole, history.toRole, history.method) == (Role.ASSOCIATE, Role.MANAGER, "application")
        assert history.changedBy == "admin-1"

    @pytest.mark.asyncio
    async def test_identity_failure_keeps_role_change(self, service, make_member, identity, config):
        config.set(config.MANAGER_THRESHOLDS, ZERO_THRESHOLDS)
        identity.fail = True
        member = make_member(role=Role.ASSOCIATE)
        applicationId = await service.submitPromotionApplication(member.memberID, "MANAGER")

        result = await service.reviewPromotionApplication(applicationId, "APPROVED", "admin-1")

        metadata = [s for s in result["sideEffects"] if s["kind"] == "update_role_metadata"][0]
        assert metadata["status"] == "failed"
        assert member.role == Role.MANAGER

    @pytest.mark.asyncio
    async def test_unknown_application(self, service):
        with pytest.raises(NotFoundError):
            await service.reviewPromotionApplication(123, "APPROVED", "admin-1")

    @pytest.mark.asyncio
    async def test_unknown_decision(self, service, make_member):
        member = make_member()
        applicationId = await service.submitPromotionApplication(member.memberID, "ASSOCIATE")
        with pytest.raises(ValidationError):
            await service.reviewPromotionApplication(applicationId, "MAYBE", "admin-1")


# =============================================================================
# TEST CLASS: queries
# =============================================================================

class TestQueries:

    @pytest.mark.asyncio
    async def test_list_by_status(self, service, make_member):
        first = make_member()
        second = make_member()
        await service.submitPromotionApplication(first.memberID, "ASSOCIATE")
        rejected = await service.submitPromotionApplication(second.memberID, "ASSOCIATE")
        await service.reviewPromotionApplication(rejected, "REJECTED", "admin-1", "no")

        pending = await service.listApplications("PENDING")

        assert [a["memberId"] for a in pending] == [first.memberID]
        assert len(await service.listApplications()) == 2

    @pytest.mark.asyncio
    async def test_counters_reported_separately(self, service, make_member, session, config):
        """
        TEST: Application and role-history counters are independent; demotions are not counted.
        """
        config.set(config.MANAGER_THRESHOLDS, ZERO_THRESHOLDS)
        member = make_member(role=Role.ASSOCIATE)
        applicationId = await service.submitPromotionApplication(member.memberID, "MANAGER")
        await service.reviewPromotionApplication(applicationId, "APPROVED", "admin-1")

        session.add(RoleChangeHistory(
            memberID=member.memberID, fromRole=Role.MANAGER, toRole=Role.BASE,
            reason="demoted", changedBy="SYSTEM", method="demotion", changedAt=datetime(2024, 12, 1)
        ))
        session.commit()

        counters = await service.getPromotionCounters()

        assert counters == {"applicationPromotions": 1, "roleChangePromotions": 1}
