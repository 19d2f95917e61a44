# tests/test_onboarding_service.py
"""
Tests for the onboarding checklist and the deferred ASSOCIATE role change.

Run:
    pytest tests/test_onboarding_service.py -v
"""
import pytest

from lifecycle_system.errors import ValidationError, StateError
from lifecycle_system.services.onboarding_service import OnboardingService
from lifecycle_system.services.promotion_service import PromotionService
from models import Role, OnboardingStep, PromotionApplication, RoleChangeHistory

from conftest import NOW

ALL_STEPS = ["COMPLIANCE_TEST", "GUIDANCE", "MANAGER_CONTACT", "PAYOUT_ACCOUNT"]


@pytest.fixture
def service(session, side_effects, clock):
    return OnboardingService(session, side_effects, clock)


@pytest.fixture
def approved_member(session, side_effects, clock, make_member):
    """BASE member with an approved ASSOCIATE application."""

    async def _make():
        member = make_member()
        promotions = PromotionService(session, sideEffects=side_effects, clock=clock)
        applicationId = await promotions.submitPromotionApplication(member.memberID, "ASSOCIATE")
        await promotions.reviewPromotionApplication(applicationId, "APPROVED", "admin-1")
        return member, applicationId

    return _make


class TestOnboardingChecklist:

    @pytest.mark.asyncio
    async def test_scenario_d_role_changes_after_last_step(self, service, approved_member, session, identity):
        """
        TEST: Role stays BASE through three steps and becomes ASSOCIATE on the fourth.
        """
        member, applicationId = await approved_member()

        for step in ALL_STEPS[:3]:
            result = await service.completeOnboardingStep(member.memberID, step)
            assert result["roleChanged"] is False
            assert result["onboardingCompleted"] is False
            assert member.role == Role.BASE

        result = await service.completeOnboardingStep(member.memberID, ALL_STEPS[3])

        assert result["onboardingCompleted"] is True
        assert result["roleChanged"] is True
        assert member.role == Role.ASSOCIATE
        assert member.onboardingCompletedAt == NOW
        assert identity.calls == [(member.externalID, "ASSOCIATE")]

        history = session.query(RoleChangeHistory).one()
        assert history.method == "onboarding"
        assert history.changedBy == "SYSTEM"
        assert session.get(PromotionApplication, applicationId).completedAt == NOW

    @pytest.mark.asyncio
    async def test_steps_in_any_order(self, service, approved_member):
        member, _ = await approved_member()

        for step in reversed(ALL_STEPS):
            result = await service.completeOnboardingStep(member.memberID, step)

        assert result["roleChanged"] is True
        assert member.role == Role.ASSOCIATE

    @pytest.mark.asyncio
    async def test_repeated_step_is_idempotent(self, service, approved_member):
        member, _ = await approved_member()

        await service.completeOnboardingStep(member.memberID, "compliance_test")
        first_passed_at = member.complianceTestPassedAt
        result = await service.completeOnboardingStep(member.memberID, OnboardingStep.COMPLIANCE_TEST)

        assert result["steps"]["COMPLIANCE_TEST"] is True
        assert member.complianceTestPassedAt == first_passed_at

    @pytest.mark.asyncio
    async def test_completion_callback_runs_once(self, session, side_effects, clock, approved_member):
        member, _ = await approved_member()
        calls = []

        async def on_completed(m):
            calls.append(m.memberID)
            return []

        service = OnboardingService(session, side_effects, clock, onCompleted=on_completed)
        for step in ALL_STEPS:
            await service.completeOnboardingStep(member.memberID, step)
        await service.completeOnboardingStep(member.memberID, ALL_STEPS[0])

        assert calls == [member.memberID]
        assert member.role == Role.BASE

    @pytest.mark.asyncio
    async def test_locked_checklist(self, service, make_member):
        member = make_member()
        with pytest.raises(StateError):
            await service.completeOnboardingStep(member.memberID, "GUIDANCE")

    @pytest.mark.asyncio
    async def test_unknown_step(self, service, approved_member):
        member, _ = await approved_member()
        with pytest.raises(ValidationError):
            await service.completeOnboardingStep(member.memberID, "SKYDIVING")

    @pytest.mark.asyncio
    async def test_status(self, service, approved_member):
        member, _ = await approved_member()
        await service.completeOnboardingStep(member.memberID, "GUIDANCE")

        status = await service.getOnboardingStatus(member.memberID)

        assert status["unlocked"] is True
        assert status["steps"] == {
            "COMPLIANCE_TEST": False,
            "GUIDANCE": True,
            "MANAGER_CONTACT": False,
            "PAYOUT_ACCOUNT": False,
        }
        assert status["onboardingCompleted"] is False
