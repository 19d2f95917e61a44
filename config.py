# config.py
"""
Configuration management for the membership lifecycle engine.
Loads from .env, validates critical keys.
"""
import os
import json
import logging
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        secret = Config.get(Config.CRON_SECRET)

        # Set dynamic value
        Config.set(Config.SYSTEM_READY, True)
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # HTTP API
    API_HOST = "API_HOST"
    API_PORT = "API_PORT"
    CRON_SECRET = "CRON_SECRET"

    # Billing provider (Stripe)
    STRIPE_API_KEY = "STRIPE_API_KEY"
    STRIPE_API_BASE = "STRIPE_API_BASE"

    # Identity provider (Supabase auth admin)
    SUPABASE_URL = "SUPABASE_URL"
    SUPABASE_SERVICE_ROLE_KEY = "SUPABASE_SERVICE_ROLE_KEY"

    # Membership policy
    MAX_SUSPENSION_MONTHS = "MAX_SUSPENSION_MONTHS"
    MINIMUM_COMMITMENT_MONTHS = "MINIMUM_COMMITMENT_MONTHS"
    DELINQUENCY_GRACE_DAYS = "DELINQUENCY_GRACE_DAYS"

    # Promotion policy
    ELIGIBILITY_WINDOW_MONTHS = "ELIGIBILITY_WINDOW_MONTHS"
    ELIGIBILITY_TIMEOUT_SECONDS = "ELIGIBILITY_TIMEOUT_SECONDS"
    MANAGER_THRESHOLDS = "MANAGER_THRESHOLDS"

    # External side effects
    SIDE_EFFECT_MAX_ATTEMPTS = "SIDE_EFFECT_MAX_ATTEMPTS"
    PROVIDER_TIMEOUT_SECONDS = "PROVIDER_TIMEOUT_SECONDS"

    # System
    SYSTEM_READY = "SYSTEM_READY"
    SCHEDULER_ENABLED = "SCHEDULER_ENABLED"
    LOG_FILE = "LOG_FILE"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
        CRON_SECRET,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///lifecycle.db"
            )

            # HTTP API
            cls._config[cls.API_HOST] = os.getenv("API_HOST", "0.0.0.0")
            cls._config[cls.API_PORT] = int(os.getenv("API_PORT", "8080"))
            cls._config[cls.CRON_SECRET] = os.getenv("CRON_SECRET")

            # Stripe
            cls._config[cls.STRIPE_API_KEY] = os.getenv("STRIPE_API_KEY")
            cls._config[cls.STRIPE_API_BASE] = os.getenv(
                "STRIPE_API_BASE",
                "https://api.stripe.com/v1"
            )

            # Supabase
            cls._config[cls.SUPABASE_URL] = os.getenv("SUPABASE_URL")
            cls._config[cls.SUPABASE_SERVICE_ROLE_KEY] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

            # Membership policy
            cls._config[cls.MAX_SUSPENSION_MONTHS] = int(os.getenv("MAX_SUSPENSION_MONTHS", "3"))
            cls._config[cls.MINIMUM_COMMITMENT_MONTHS] = int(os.getenv("MINIMUM_COMMITMENT_MONTHS", "6"))
            cls._config[cls.DELINQUENCY_GRACE_DAYS] = int(os.getenv("DELINQUENCY_GRACE_DAYS", "7"))

            # Promotion policy
            cls._config[cls.ELIGIBILITY_WINDOW_MONTHS] = int(os.getenv("ELIGIBILITY_WINDOW_MONTHS", "6"))
            cls._config[cls.ELIGIBILITY_TIMEOUT_SECONDS] = float(
                os.getenv("ELIGIBILITY_TIMEOUT_SECONDS", "8")
            )

            # Manager thresholds (JSON format, optional override)
            thresholds_str = os.getenv("MANAGER_THRESHOLDS", "")
            if thresholds_str:
                try:
                    cls._config[cls.MANAGER_THRESHOLDS] = json.loads(thresholds_str)
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse MANAGER_THRESHOLDS JSON: {e}")
                    cls._config[cls.MANAGER_THRESHOLDS] = None
            else:
                cls._config[cls.MANAGER_THRESHOLDS] = None

            # External side effects
            cls._config[cls.SIDE_EFFECT_MAX_ATTEMPTS] = int(os.getenv("SIDE_EFFECT_MAX_ATTEMPTS", "5"))
            cls._config[cls.PROVIDER_TIMEOUT_SECONDS] = int(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))

            # System
            cls._config[cls.SCHEDULER_ENABLED] = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
            cls._config[cls.LOG_FILE] = os.getenv("LOG_FILE", "lifecycle.log")
            cls._config[cls.SYSTEM_READY] = False

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @classmethod
    def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present.

        Raises:
            ConfigurationError: If any critical key is missing
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("All critical configuration keys validated ✓")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = cls._config.get(key)
        return default if value is None else value

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def reset(cls) -> None:
        """Drop all loaded values. Used by tests."""
        cls._config = {}
        cls._initialized = False
