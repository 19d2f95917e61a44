# providers/__init__.py
"""
External collaborators: billing, identity and notification providers.
"""
from providers.stripe_billing import StripeBillingProvider
from providers.supabase_identity import SupabaseIdentityProvider
from providers.notification_dispatcher import NotificationDispatcher


def build_providers() -> dict:
    """
    Create providers from Config.

    Returns:
        Dict with 'billing', 'identity' and 'notifier' keys
    """
    from config import Config

    timeout = Config.get(Config.PROVIDER_TIMEOUT_SECONDS, 30)

    return {
        "billing": StripeBillingProvider(
            api_key=Config.get(Config.STRIPE_API_KEY),
            base_url=Config.get(Config.STRIPE_API_BASE, "https://api.stripe.com/v1"),
            timeout=timeout
        ),
        "identity": SupabaseIdentityProvider(
            url=Config.get(Config.SUPABASE_URL),
            service_role_key=Config.get(Config.SUPABASE_SERVICE_ROLE_KEY),
            timeout=timeout
        ),
        "notifier": NotificationDispatcher(),
    }


__all__ = [
    'StripeBillingProvider',
    'SupabaseIdentityProvider',
    'NotificationDispatcher',
    'build_providers',
]
