# tests/test_compensation_service.py
"""
Tests for monthly compensation generation, import and locking.

Run:
    pytest tests/test_compensation_service.py -v
"""
from datetime import datetime
from decimal import Decimal

import pytest

from lifecycle_system.errors import ValidationError, StateError
from lifecycle_system.services.compensation_service import CompensationService, monthRange
from models import Role, Contract, ContractStatus, Compensation, CompensationStatus

from conftest import NOW


@pytest.fixture
def service(session, clock):
    return CompensationService(session, clock)


def add_contract(session, memberId, signedAt, reward, status=ContractStatus.ACTIVE):
    session.add(Contract(memberID=memberId, signedAt=signedAt, rewardAmount=Decimal(reward), status=status))
    session.commit()


class TestGeneration:

    def test_month_range(self):
        bounds = monthRange("2024-12")
        assert bounds == {"start": datetime(2024, 12, 1), "end": datetime(2025, 1, 1)}

    @pytest.mark.asyncio
    async def test_generate_for_associates_and_managers(self, service, make_member, session):
        associate = make_member(role=Role.ASSOCIATE)
        idle = make_member(role=Role.MANAGER)
        base = make_member(role=Role.BASE)
        add_contract(session, associate.memberID, datetime(2024, 10, 1), "100")
        add_contract(session, associate.memberID, datetime(2024, 10, 31, 22), "50")
        add_contract(session, associate.memberID, datetime(2024, 10, 5), "999", ContractStatus.CANCELLED)
        add_contract(session, associate.memberID, datetime(2024, 11, 1), "999")
        add_contract(session, base.memberID, datetime(2024, 10, 5), "100")

        result = await service.generateMonthlyCompensation("2024-10")

        assert [s["memberId"] for s in result["succeeded"]] == [associate.memberID]
        assert result["succeeded"][0]["amount"] == Decimal("150")
        assert result["skipped"] == [{"memberId": idle.memberID, "reason": "zero total"}]

        row = session.query(Compensation).one()
        assert row.status == CompensationStatus.PENDING
        assert row.earnedAsRole == Role.ASSOCIATE
        assert row.referralReward == 0

    @pytest.mark.asyncio
    async def test_rerun_skips_existing(self, service, make_member, session):
        member = make_member(role=Role.ASSOCIATE)
        add_contract(session, member.memberID, datetime(2024, 10, 1), "100")

        await service.generateMonthlyCompensation("2024-10")
        second = await service.generateMonthlyCompensation("2024-10")

        assert second["skipped"] == [{"memberId": member.memberID, "reason": "already exists"}]
        assert session.query(Compensation).count() == 1

    @pytest.mark.asyncio
    async def test_invalid_month(self, service):
        with pytest.raises(ValidationError):
            await service.generateMonthlyCompensation("2024-13")


class TestImportAndLocking:

    @pytest.mark.asyncio
    async def test_upsert_creates_then_updates(self, service, make_member):
        member = make_member(role=Role.ASSOCIATE)

        created = await service.upsertCompensation(
            member.memberID, "2024-10",
            {"referralReward": "300", "contractReward": 200, "bonus": "50", "deduction": "25"}
        )
        updated = await service.upsertCompensation(member.memberID, "2024-10", {"bonus": 10}, status="confirmed")

        assert created["created"] is True
        assert created["amount"] == Decimal("525")
        assert updated["created"] is False
        assert updated["compensationId"] == created["compensationId"]
        assert updated["amount"] == Decimal("10")
        assert updated["status"] == "CONFIRMED"

    @pytest.mark.asyncio
    async def test_upsert_rejects_bad_number(self, service, make_member):
        member = make_member(role=Role.ASSOCIATE)
        with pytest.raises(ValidationError):
            await service.upsertCompensation(member.memberID, "2024-10", {"bonus": "lots"})

    @pytest.mark.asyncio
    async def test_locked_row_is_immutable(self, service, make_member, session):
        member = make_member(role=Role.ASSOCIATE)
        created = await service.upsertCompensation(member.memberID, "2024-10", {"bonus": 100})

        locked = await service.lockCompensations([created["compensationId"]])
        assert locked == {"locked": 1}

        with pytest.raises(StateError):
            await service.upsertCompensation(member.memberID, "2024-10", {"bonus": 1})

        row = session.get(Compensation, created["compensationId"])
        assert row.lockedAt == NOW
        row.bonus = Decimal("1")
        with pytest.raises(StateError):
            session.commit()
        session.rollback()

    @pytest.mark.asyncio
    async def test_unlock_allows_edits(self, service, make_member, session):
        member = make_member(role=Role.ASSOCIATE)
        created = await service.upsertCompensation(member.memberID, "2024-10", {"bonus": 100})
        await service.lockCompensations([created["compensationId"]])

        unlocked = await service.unlockCompensations([created["compensationId"]], "admin-9")
        updated = await service.upsertCompensation(member.memberID, "2024-10", {"bonus": 5})

        assert unlocked == {"unlocked": 1}
        assert updated["amount"] == Decimal("5")
        row = session.get(Compensation, created["compensationId"])
        assert row.unlockedBy == "admin-9"
        assert row.isLocked is False

    @pytest.mark.asyncio
    async def test_lock_is_idempotent(self, service, make_member):
        member = make_member(role=Role.ASSOCIATE)
        created = await service.upsertCompensation(member.memberID, "2024-10", {"bonus": 100})

        await service.lockCompensations([created["compensationId"]])
        again = await service.lockCompensations([created["compensationId"]])

        assert again == {"locked": 0}
