# tests/test_side_effect_service.py
"""
Tests for the side effect outbox: dispatch, failure reporting and retries.

Run:
    pytest tests/test_side_effect_service.py -v
"""
from datetime import datetime

import pytest

from lifecycle_system.services.side_effect_service import SideEffectService
from models import SideEffectKind, SideEffectTask, Notification
from providers.notification_dispatcher import NotificationDispatcher


class TestDispatch:

    @pytest.mark.asyncio
    async def test_dispatch_routes_by_kind(self, session, side_effects, billing, identity, notifier):
        tasks = [
            side_effects.enqueue(SideEffectKind.PAUSE_BILLING, 1,
                                 {"subscriptionId": "sub_1", "resumeAt": "2025-01-01T00:00:00"}),
            side_effects.enqueue(SideEffectKind.SCHEDULE_CANCELLATION, 1, {"subscriptionId": "sub_1", "at": None}),
            side_effects.enqueue(SideEffectKind.UPDATE_ROLE_METADATA, 1, {"userId": "ext-1", "role": "MANAGER"}),
            side_effects.enqueueNotification(1, "role_changed", {"toRole": "MANAGER"}),
        ]
        session.commit()

        results = await side_effects.dispatch(tasks)

        assert [r["status"] for r in results] == ["done"] * 4
        assert billing.calls == [
            ("pause_billing", "sub_1", datetime(2025, 1, 1)),
            ("schedule_cancellation", "sub_1", None),
        ]
        assert identity.calls == [("ext-1", "MANAGER")]
        assert notifier.sent == [(1, "role_changed", {"toRole": "MANAGER"})]

    @pytest.mark.asyncio
    async def test_missing_provider_fails_task(self, session, clock):
        service = SideEffectService(session, clock=clock)
        task = service.enqueue(SideEffectKind.UNPAUSE_BILLING, 1, {"subscriptionId": "sub_1"})
        session.commit()

        [result] = await service.dispatch([task])

        assert result["status"] == "failed"
        assert "not configured" in result["error"]

    @pytest.mark.asyncio
    async def test_notification_dispatcher_writes_row(self, session, make_member, clock):
        member = make_member()
        service = SideEffectService(session, notifier=NotificationDispatcher(), clock=clock)
        task = service.enqueueNotification(member.memberID, "suspension_started", {"days": 30})
        session.commit()

        [result] = await service.dispatch([task])

        assert result["status"] == "done"
        notification = session.query(Notification).one()
        assert notification.templateKind == "suspension_started"
        assert notification.context == {"days": 30}


class TestRetry:

    @pytest.mark.asyncio
    async def test_failed_task_retried_until_done(self, session, side_effects, identity):
        identity.fail = True
        task = side_effects.enqueue(SideEffectKind.UPDATE_ROLE_METADATA, 7, {"userId": "ext-7", "role": "BASE"})
        session.commit()
        await side_effects.dispatch([task])
        assert task.status == "failed"

        identity.fail = False
        stats = await side_effects.retryFailed()

        assert stats == {"processed": 1, "done": 1, "failed": 0}
        assert task.status == "done"
        assert task.attempts == 2
        assert task.lastError is None

    @pytest.mark.asyncio
    async def test_attempt_limit(self, session, side_effects, identity, config):
        config.set(config.SIDE_EFFECT_MAX_ATTEMPTS, 2)
        identity.fail = True
        task = side_effects.enqueue(SideEffectKind.UPDATE_ROLE_METADATA, 7, {"userId": "ext-7", "role": "BASE"})
        session.commit()

        await side_effects.dispatch([task])
        await side_effects.retryFailed()
        stats = await side_effects.retryFailed()

        assert stats == {"processed": 0, "done": 0, "failed": 0}
        assert task.attempts == 2
        assert session.query(SideEffectTask).filter_by(status="failed").count() == 1

    @pytest.mark.asyncio
    async def test_done_tasks_not_retried(self, session, side_effects, notifier):
        task = side_effects.enqueueNotification(3, "payment_failed")
        session.commit()
        await side_effects.dispatch([task])

        stats = await side_effects.retryFailed()

        assert stats["processed"] == 0
        assert len(notifier.sent) == 1
