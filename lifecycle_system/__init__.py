# lifecycle_system/__init__.py
"""
Lifecycle System - membership status and role progression engine.
"""

# Services
from lifecycle_system.services.membership_service import MembershipService
from lifecycle_system.services.eligibility_service import EligibilityService
from lifecycle_system.services.promotion_service import PromotionService, AssociateCompletionHandler
from lifecycle_system.services.onboarding_service import OnboardingService
from lifecycle_system.services.reconciliation_service import ReconciliationService
from lifecycle_system.services.compensation_service import CompensationService
from lifecycle_system.services.side_effect_service import SideEffectService
from lifecycle_system.services.activity_service import ActivityService

# Configuration
from lifecycle_system.config.statuses import STATUS_TRANSITIONS
from lifecycle_system.config.roles import get_manager_thresholds

# Errors
from lifecycle_system.errors import (
    LifecycleError,
    ValidationError,
    NotFoundError,
    StateError,
    ConflictError,
    AuthenticationError,
    ExternalDependencyError,
    EvaluationTimeoutError,
)

# Utilities
from lifecycle_system.utils.time_machine import timeMachine

__all__ = [
    # Services
    'MembershipService',
    'EligibilityService',
    'PromotionService',
    'AssociateCompletionHandler',
    'OnboardingService',
    'ReconciliationService',
    'CompensationService',
    'SideEffectService',
    'ActivityService',

    # Config
    'STATUS_TRANSITIONS',
    'get_manager_thresholds',

    # Errors
    'LifecycleError',
    'ValidationError',
    'NotFoundError',
    'StateError',
    'ConflictError',
    'AuthenticationError',
    'ExternalDependencyError',
    'EvaluationTimeoutError',

    # Utils
    'timeMachine',
]
