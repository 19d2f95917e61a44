# providers/stripe_billing.py
"""
Stripe billing provider - pause, resume and cancel subscriptions.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from lifecycle_system.errors import ExternalDependencyError

logger = logging.getLogger(__name__)


def _unix(at: datetime) -> int:
    """Naive UTC datetime → unix timestamp."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return int(at.timestamp())


class StripeBillingProvider:
    """Billing provider over the Stripe subscriptions REST API."""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.stripe.com/v1", timeout: int = 30):
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret key
            base_url: API base URL
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        if not api_key:
            logger.warning("StripeBillingProvider initialized without API key, calls will fail")
        else:
            logger.info(f"StripeBillingProvider initialized: base_url={self.base_url}")

    async def pause_billing(self, subscription_id: str, resume_at: datetime) -> dict:
        """Void invoices until resume_at, then resume automatically."""
        return await self._update_subscription(subscription_id, {
            "pause_collection[behavior]": "void",
            "pause_collection[resumes_at]": str(_unix(resume_at)),
        })

    async def unpause_billing(self, subscription_id: str) -> dict:
        # Empty value clears pause_collection
        return await self._update_subscription(subscription_id, {"pause_collection": ""})

    async def schedule_cancellation(self, subscription_id: str, at: Optional[datetime]) -> dict:
        """
        Schedule cancellation.

        Args:
            subscription_id: Stripe subscription id
            at: Cancellation date, or None to cancel at the end of the current period
        """
        if at is None:
            data = {"cancel_at_period_end": "true"}
        else:
            data = {"cancel_at": str(_unix(at))}
        return await self._update_subscription(subscription_id, data)

    async def _update_subscription(self, subscription_id: str, data: dict) -> dict:
        if not self.api_key:
            raise ExternalDependencyError("Stripe API key not configured")
        if not subscription_id:
            raise ExternalDependencyError("Member has no billing subscription")

        url = f"{self.base_url}/subscriptions/{subscription_id}"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                        url,
                        headers={"Authorization": f"Bearer {self.api_key}"},
                        data=data,
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status == 200:
                        logger.info(f"Stripe subscription {subscription_id} updated: {list(data)}")
                        return await response.json()

                    error_text = await response.text()
                    logger.error(f"Stripe API error: {response.status} - {error_text}")
                    raise ExternalDependencyError(
                        f"Stripe returned {response.status}",
                        details={"subscriptionId": subscription_id, "body": error_text[:500]}
                    )

        except aiohttp.ClientError as e:
            logger.error(f"HTTP error while updating Stripe subscription {subscription_id}: {e}")
            raise ExternalDependencyError(f"Stripe unreachable: {e}")
