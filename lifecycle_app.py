# lifecycle_app.py
"""
Membership lifecycle engine - Main entry point.
Starts the HTTP API and the in-process job scheduler.
"""
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv

from config import Config
from core.db import setup_database
from models.listeners import register_all_listeners
from providers import build_providers

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(os.getenv('LOG_FILE', 'lifecycle.log'))
    ]
)

logger = logging.getLogger(__name__)


async def initialize_app():
    """
    Initialize configuration, database, providers, API server and scheduler.

    Returns:
        Tuple[AppRunner, Optional[LifecycleScheduler]]
    """
    try:
        logger.info("=" * 60)
        logger.info("LIFECYCLE ENGINE INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Load configuration from .env
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📋 Loading configuration from .env...")
        Config.initialize_from_env()
        Config.validate_critical_keys()
        logger.info("✓ Configuration loaded and validated")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Setup database
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("💾 Setting up database...")
        setup_database()
        register_all_listeners()
        logger.info("✓ Database ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: External providers
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("🔌 Building external providers...")
        providers = build_providers()
        logger.info("✓ Providers ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 4: HTTP API
        # ═══════════════════════════════════════════════════════════════════════
        from api.server import start_api_server
        runner = await start_api_server(providers)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 5: Scheduler
        # ═══════════════════════════════════════════════════════════════════════
        lifecycle_scheduler = None
        if Config.get(Config.SCHEDULER_ENABLED, True):
            from background import lifecycle_scheduler as scheduler_module
            lifecycle_scheduler = scheduler_module.LifecycleScheduler(providers)
            scheduler_module.scheduler = lifecycle_scheduler
            await lifecycle_scheduler.start()
        else:
            logger.info("Scheduler disabled, jobs run only via /cron endpoints")

        Config.set(Config.SYSTEM_READY, True)

        logger.info("=" * 60)
        logger.info("✅ INITIALIZATION COMPLETE")
        logger.info("=" * 60)

        return runner, lifecycle_scheduler

    except Exception as e:
        logger.critical(f"❌ Initialization failed: {e}", exc_info=True)
        raise


async def main():
    """Main entry point."""
    runner = None
    lifecycle_scheduler = None
    try:
        runner, lifecycle_scheduler = await initialize_app()

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

        await stop_event.wait()
        logger.info("⚠️ Shutdown signal received")

    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if lifecycle_scheduler:
            await lifecycle_scheduler.stop()
        if runner:
            await runner.cleanup()
        logger.info("👋 Lifecycle engine shutdown complete")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Lifecycle engine stopped")
