# background/lifecycle_scheduler.py
"""
Lifecycle Scheduler - runs the reconciliation jobs in-process.
Uses APScheduler; the same jobs are also reachable over HTTP for an
external cron or an admin "run now".
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from core.db import get_db_session_ctx
from lifecycle_system.services.reconciliation_service import ReconciliationService
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class LifecycleScheduler:
    """
    Background scheduler for lifecycle jobs.

    Jobs:
    - Auto-resume: every day at 00:05 UTC
    - Auto-demotion: 1st of month at 00:10 UTC
    - Side effect retry sweep: every 10 minutes
    """

    def __init__(self, providers: Optional[dict] = None):
        """
        Initialize scheduler.

        Args:
            providers: Dict with 'billing', 'identity' and 'notifier' providers
        """
        self.providers = providers or {}
        self.isRunning = False

        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 300  # 5 minutes grace period
            }
        )

        # Statistics
        self.stats = {
            "tasksExecuted": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastExecutedAt": None,
            "lastResume": None,
            "lastDemotion": None,
            "sideEffectsRetried": 0
        }

    async def start(self):
        if self.isRunning:
            logger.warning("Lifecycle Scheduler already running")
            return

        logger.info("=" * 60)
        logger.info("Starting Lifecycle Scheduler with APScheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        # ═══════════════════════════════════════════════════════════════
        # JOB 1: Auto-resume (every day at 00:05 UTC)
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_auto_resume_wrapper,
            trigger=CronTrigger(hour=0, minute=5),
            id='auto_resume',
            name='Auto-resume suspended members (00:05 UTC)',
            replace_existing=True
        )
        logger.info("✓ Job registered: Auto-resume (daily 00:05 UTC)")

        # ═══════════════════════════════════════════════════════════════
        # JOB 2: Auto-demotion (1st of month at 00:10 UTC)
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_auto_demotion_wrapper,
            trigger=CronTrigger(day=1, hour=0, minute=10),
            id='auto_demotion',
            name='Auto-demotion after missed meetings (1st, 00:10 UTC)',
            replace_existing=True
        )
        logger.info("✓ Job registered: Auto-demotion (1st of month 00:10 UTC)")

        # ═══════════════════════════════════════════════════════════════
        # JOB 3: Side effect retry sweep (every 10 minutes)
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_side_effect_retry_wrapper,
            trigger=IntervalTrigger(minutes=10),
            id='side_effect_retry',
            name='Side Effect Retry Sweep',
            replace_existing=True
        )
        logger.info("✓ Job registered: Side effect retry (every 10 minutes)")

        self.scheduler.start()

        logger.info("=" * 60)
        logger.info("✅ Lifecycle Scheduler started successfully")
        logger.info(f"Active jobs: {len(self.scheduler.get_jobs())}")
        logger.info("=" * 60)

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping Lifecycle Scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ Lifecycle Scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPERS (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_auto_resume_wrapper(self):
        try:
            await self.runAutoResume()
        except Exception as e:
            logger.error(f"Error in auto-resume job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def _safe_auto_demotion_wrapper(self):
        try:
            await self.runAutoDemotion()
        except Exception as e:
            logger.error(f"Error in auto-demotion job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    async def _safe_side_effect_retry_wrapper(self):
        try:
            await self.retrySideEffects()
        except Exception as e:
            logger.error(f"Error in side effect retry job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    # ═══════════════════════════════════════════════════════════════════
    # JOBS
    # ═══════════════════════════════════════════════════════════════════

    def _sideEffects(self, session) -> SideEffectService:
        return SideEffectService(
            session,
            billing=self.providers.get('billing'),
            identity=self.providers.get('identity'),
            notifier=self.providers.get('notifier')
        )

    async def runAutoResume(self) -> dict:
        logger.info(f"Executing auto-resume job at {timeMachine.now.isoformat()}")

        with get_db_session_ctx() as session:
            service = ReconciliationService(session, self._sideEffects(session))
            result = await service.runAutoResumeJob(Config.get(Config.CRON_SECRET))

        self._record("lastResume", result)
        return result

    async def runAutoDemotion(self) -> dict:
        logger.info(f"Executing auto-demotion job for month before {timeMachine.currentMonth}")

        with get_db_session_ctx() as session:
            service = ReconciliationService(session, self._sideEffects(session))
            result = await service.runAutoDemotionJob(Config.get(Config.CRON_SECRET))

        self._record("lastDemotion", result)
        return result

    async def retrySideEffects(self) -> dict:
        with get_db_session_ctx() as session:
            stats = await self._sideEffects(session).retryFailed()

        self.stats["sideEffectsRetried"] += stats["processed"]
        return stats

    def _record(self, key: str, result: dict):
        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        self.stats[key] = {
            "succeeded": len(result["succeeded"]),
            "skipped": len(result["skipped"]),
            "failed": len(result["failed"]),
        }

    def getStatus(self) -> dict:
        """Get scheduler status."""
        jobs_info = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None
                })

        return {
            "isRunning": self.isRunning,
            "schedulerRunning": self.scheduler.running,
            "currentTime": timeMachine.now.isoformat(),
            "isTestMode": timeMachine.isTestMode,
            "stats": self.stats,
            "jobs": jobs_info
        }


# Global scheduler instance (created in lifecycle_app.py)
scheduler: Optional[LifecycleScheduler] = None
