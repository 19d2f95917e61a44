# api/server.py
"""
HTTP surface of the lifecycle engine.

Routes:
    Cron (Authorization: Bearer <CRON_SECRET>):
        POST /cron/resume-suspended
        POST /cron/demote-members
        POST /cron/retry-side-effects
    Billing events (same bearer token, called by the billing webhook relay):
        POST /billing/members/{memberId}/payment-failed
        POST /billing/members/{memberId}/payment-succeeded
        POST /billing/members/{memberId}/period-ended
    Member:
        POST   /members/{memberId}/suspension
        DELETE /members/{memberId}/suspension
        POST   /members/{memberId}/cancellation
        GET    /members/{memberId}/status-history
        GET    /members/{memberId}/eligibility?targetRole=...
        POST   /members/{memberId}/promotion-applications
        GET    /members/{memberId}/onboarding
        POST   /members/{memberId}/onboarding/{step}
    Admin (X-Actor-Id header set by the identity gateway):
        GET  /admin/promotion-applications
        POST /admin/promotion-applications/{applicationId}/review
        GET  /admin/promotion-counters
        GET  /admin/delinquency-candidates
        POST /admin/members/{memberId}/delinquent
        POST /admin/cancel-requests/{requestId}/process
        POST /admin/compensations/generate
        PUT  /admin/compensations
        POST /admin/compensations/lock
        POST /admin/compensations/unlock

Authentication of end users happens upstream; this server trusts X-Actor-Id.
Member routes record X-Actor-Id as the audit actor when present (support
staff acting for a member); without it the member acts for themselves and
the actor is the member id.
"""
import functools
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from aiohttp import web

from config import Config
from core.db import get_session
from lifecycle_system.errors import LifecycleError, ValidationError
from lifecycle_system.services.compensation_service import CompensationService
from lifecycle_system.services.eligibility_service import EligibilityService
from lifecycle_system.services.membership_service import MembershipService
from lifecycle_system.services.onboarding_service import OnboardingService
from lifecycle_system.services.promotion_service import PromotionService
from lifecycle_system.services.reconciliation_service import ReconciliationService
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


json_dumps = functools.partial(json.dumps, default=_json_default)


def json_response(data, status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=json_dumps)


def bearer_token(request: web.Request) -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return None


def _int_param(request: web.Request, name: str) -> int:
    try:
        return int(request.match_info[name])
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


async def _json_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON")
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _actor(request: web.Request) -> str:
    actor = request.headers.get('X-Actor-Id')
    if not actor:
        raise ValidationError("X-Actor-Id header is required")
    return actor


def _member_actor(request: web.Request, memberId: int) -> str:
    return request.headers.get('X-Actor-Id') or str(memberId)


class LifecycleApiServer:
    """aiohttp application exposing lifecycle operations."""

    def __init__(self, providers: Optional[dict] = None, clock: Optional[TimeMachine] = None):
        self.providers = providers or {}
        self.clock = clock or timeMachine

        self.request_count = 0
        self.error_count = 0
        self.start_time = None

        self.app = web.Application()
        self.setup_routes()
        self.setup_middleware()

    # ═══════════════════════════════════════════════════════════════════
    # SETUP
    # ═══════════════════════════════════════════════════════════════════

    def setup_routes(self):
        r = self.app.router
        r.add_get('/health', self.handle_health)

        # Cron
        r.add_post('/cron/resume-suspended', self.handle_resume_suspended)
        r.add_post('/cron/demote-members', self.handle_demote_members)
        r.add_post('/cron/retry-side-effects', self.handle_retry_side_effects)

        # Billing events
        r.add_post('/billing/members/{memberId}/{event}', self.handle_billing_event)

        # Member
        r.add_post('/members/{memberId}/suspension', self.handle_request_suspension)
        r.add_delete('/members/{memberId}/suspension', self.handle_resume_suspension)
        r.add_post('/members/{memberId}/cancellation', self.handle_request_cancellation)
        r.add_get('/members/{memberId}/status-history', self.handle_status_history)
        r.add_get('/members/{memberId}/eligibility', self.handle_eligibility)
        r.add_post('/members/{memberId}/promotion-applications', self.handle_submit_application)
        r.add_get('/members/{memberId}/onboarding', self.handle_onboarding_status)
        r.add_post('/members/{memberId}/onboarding/{step}', self.handle_onboarding_step)

        # Admin
        r.add_get('/admin/promotion-applications', self.handle_list_applications)
        r.add_post('/admin/promotion-applications/{applicationId}/review', self.handle_review_application)
        r.add_get('/admin/promotion-counters', self.handle_promotion_counters)
        r.add_get('/admin/delinquency-candidates', self.handle_delinquency_candidates)
        r.add_post('/admin/members/{memberId}/delinquent', self.handle_mark_delinquent)
        r.add_post('/admin/cancel-requests/{requestId}/process', self.handle_process_cancel_request)
        r.add_post('/admin/compensations/generate', self.handle_generate_compensations)
        r.add_put('/admin/compensations', self.handle_upsert_compensation)
        r.add_post('/admin/compensations/lock', self.handle_lock_compensations)
        r.add_post('/admin/compensations/unlock', self.handle_unlock_compensations)

    def setup_middleware(self):
        """Map lifecycle errors to HTTP responses."""

        @web.middleware
        async def error_middleware(request, handler):
            self.request_count += 1
            logger.info(f"Request: {request.method} {request.path}")

            session = get_session()
            request['session'] = session
            try:
                return await handler(request)
            except web.HTTPException:
                raise
            except LifecycleError as e:
                logger.info(f"{request.method} {request.path} → {e.http_status} {e.kind}: {e.message}")
                return json_response(e.to_dict(), status=e.http_status)
            except Exception as e:
                logger.error(f"Error processing request {request.method} {request.path}: {e}", exc_info=True)
                self.error_count += 1
                return json_response({'error': 'internal_error', 'message': 'Internal Server Error'}, status=500)
            finally:
                session.close()

        self.app.middlewares.append(error_middleware)

    def _side_effects(self, request: web.Request) -> SideEffectService:
        return SideEffectService(
            request['session'],
            billing=self.providers.get('billing'),
            identity=self.providers.get('identity'),
            notifier=self.providers.get('notifier'),
            clock=self.clock
        )

    def _membership(self, request) -> MembershipService:
        return MembershipService(request['session'], self._side_effects(request), self.clock)

    def _promotion(self, request) -> PromotionService:
        session = request['session']
        return PromotionService(
            session,
            eligibility=EligibilityService(session, clock=self.clock),
            sideEffects=self._side_effects(request),
            clock=self.clock
        )

    # ═══════════════════════════════════════════════════════════════════
    # HEALTH
    # ═══════════════════════════════════════════════════════════════════

    async def handle_health(self, request: web.Request) -> web.Response:
        return json_response({
            'status': 'ok',
            'time': self.clock.now,
            'isTestMode': self.clock.isTestMode,
            'requests_total': self.request_count,
            'errors_total': self.error_count,
        })

    # ═══════════════════════════════════════════════════════════════════
    # CRON
    # ═══════════════════════════════════════════════════════════════════

    async def handle_resume_suspended(self, request: web.Request) -> web.Response:
        service = ReconciliationService(request['session'], self._side_effects(request), self.clock)
        return json_response(await service.runAutoResumeJob(bearer_token(request)))

    async def handle_demote_members(self, request: web.Request) -> web.Response:
        service = ReconciliationService(request['session'], self._side_effects(request), self.clock)
        return json_response(await service.runAutoDemotionJob(bearer_token(request)))

    async def handle_retry_side_effects(self, request: web.Request) -> web.Response:
        ReconciliationService.authenticate(bearer_token(request))
        return json_response(await self._side_effects(request).retryFailed())

    async def handle_billing_event(self, request: web.Request) -> web.Response:
        ReconciliationService.authenticate(bearer_token(request))
        memberId = _int_param(request, 'memberId')
        event = request.match_info['event']
        service = self._membership(request)

        if event == 'payment-failed':
            result = await service.recordPaymentFailed(memberId)
        elif event == 'payment-succeeded':
            result = await service.recordPaymentSucceeded(memberId)
        elif event == 'period-ended':
            result = await service.recordBillingPeriodEnded(memberId)
        else:
            raise ValidationError(f"Unknown billing event: {event}")
        return json_response(result)

    # ═══════════════════════════════════════════════════════════════════
    # MEMBER
    # ═══════════════════════════════════════════════════════════════════

    async def handle_request_suspension(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        data = await _json_body(request)
        if not data.get('endDate'):
            raise ValidationError("endDate is required")

        result = await self._membership(request).requestSuspension(
            memberId, data['endDate'], data.get('reason'), actor=_member_actor(request, memberId)
        )
        return json_response(result)

    async def handle_resume_suspension(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        result = await self._membership(request).resumeSuspension(
            memberId, actor=_member_actor(request, memberId)
        )
        return json_response(result)

    async def handle_request_cancellation(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        data = await _json_body(request)
        result = await self._membership(request).requestCancellation(
            memberId,
            data.get('reason'),
            data.get('otherReasonText'),
            data.get('continuationOption', 'permanent'),
            actor=_member_actor(request, memberId)
        )
        return json_response(result)

    async def handle_status_history(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        return json_response(await self._membership(request).getStatusHistory(memberId))

    async def handle_eligibility(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        targetRole = request.query.get('targetRole')
        if not targetRole:
            raise ValidationError("targetRole query parameter is required")

        service = EligibilityService(request['session'], clock=self.clock)
        return json_response(await service.evaluateEligibility(memberId, targetRole))

    async def handle_submit_application(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        data = await _json_body(request)
        if not data.get('targetRole'):
            raise ValidationError("targetRole is required")

        applicationId = await self._promotion(request).submitPromotionApplication(memberId, data['targetRole'])
        return json_response({'applicationId': applicationId, 'status': 'PENDING'}, status=201)

    async def handle_onboarding_status(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        service = OnboardingService(request['session'], self._side_effects(request), self.clock)
        return json_response(await service.getOnboardingStatus(memberId))

    async def handle_onboarding_step(self, request: web.Request) -> web.Response:
        memberId = _int_param(request, 'memberId')
        service = OnboardingService(request['session'], self._side_effects(request), self.clock)
        return json_response(await service.completeOnboardingStep(memberId, request.match_info['step']))

    # ═══════════════════════════════════════════════════════════════════
    # ADMIN
    # ═══════════════════════════════════════════════════════════════════

    async def handle_list_applications(self, request: web.Request) -> web.Response:
        _actor(request)
        return json_response(await self._promotion(request).listApplications(request.query.get('status')))

    async def handle_review_application(self, request: web.Request) -> web.Response:
        reviewerId = _actor(request)
        applicationId = _int_param(request, 'applicationId')
        data = await _json_body(request)
        if not data.get('decision'):
            raise ValidationError("decision is required")

        result = await self._promotion(request).reviewPromotionApplication(
            applicationId, data['decision'], reviewerId, data.get('notes')
        )
        return json_response(result)

    async def handle_promotion_counters(self, request: web.Request) -> web.Response:
        _actor(request)
        return json_response(await self._promotion(request).getPromotionCounters())

    async def handle_delinquency_candidates(self, request: web.Request) -> web.Response:
        _actor(request)
        return json_response(await self._membership(request).listDelinquencyCandidates())

    async def handle_mark_delinquent(self, request: web.Request) -> web.Response:
        adminId = _actor(request)
        memberId = _int_param(request, 'memberId')
        data = await _json_body(request)
        return json_response(await self._membership(request).markDelinquent(memberId, adminId, data.get('reason')))

    async def handle_process_cancel_request(self, request: web.Request) -> web.Response:
        adminId = _actor(request)
        requestId = _int_param(request, 'requestId')
        data = await _json_body(request)
        result = await self._membership(request).processCancelRequest(
            requestId, adminId, data.get('status', 'PROCESSED'), data.get('adminNote')
        )
        return json_response(result)

    async def handle_generate_compensations(self, request: web.Request) -> web.Response:
        _actor(request)
        data = await _json_body(request)
        service = CompensationService(request['session'], self.clock)
        return json_response(await service.generateMonthlyCompensation(data.get('month'), data.get('memberIds')))

    async def handle_upsert_compensation(self, request: web.Request) -> web.Response:
        _actor(request)
        data = await _json_body(request)
        try:
            memberId = int(data['memberId'])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("memberId is required and must be an integer")

        service = CompensationService(request['session'], self.clock)
        result = await service.upsertCompensation(
            memberId, data.get('month'), data.get('breakdown') or {}, data.get('status')
        )
        return json_response(result)

    async def handle_lock_compensations(self, request: web.Request) -> web.Response:
        _actor(request)
        data = await _json_body(request)
        service = CompensationService(request['session'], self.clock)
        return json_response(await service.lockCompensations(data.get('ids') or []))

    async def handle_unlock_compensations(self, request: web.Request) -> web.Response:
        adminId = _actor(request)
        data = await _json_body(request)
        service = CompensationService(request['session'], self.clock)
        return json_response(await service.unlockCompensations(data.get('ids') or [], adminId))

    # ═══════════════════════════════════════════════════════════════════
    # RUN
    # ═══════════════════════════════════════════════════════════════════

    async def start(self, host: str = '127.0.0.1', port: int = 8080):
        self.start_time = datetime.now()

        if host == '0.0.0.0':
            logger.warning("⚠️ API server listening on all interfaces!")

        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()

        logger.info(f"Lifecycle API server started on {host}:{port}")
        return runner


async def start_api_server(providers: Optional[dict] = None):
    """Start API server from Config."""
    try:
        server = LifecycleApiServer(providers)
        host = Config.get(Config.API_HOST, '127.0.0.1')
        port = Config.get(Config.API_PORT, 8080)
        return await server.start(host=host, port=int(port))
    except Exception as e:
        logger.critical(f"Unexpected error starting API server: {e}", exc_info=True)
        raise
