# providers/supabase_identity.py
"""
Supabase identity provider - keeps the role claim in user app_metadata in sync.
"""
import logging
from typing import Optional

import aiohttp

from lifecycle_system.errors import ExternalDependencyError

logger = logging.getLogger(__name__)


class SupabaseIdentityProvider:
    """Identity provider over the Supabase auth admin API."""

    def __init__(self, url: Optional[str], service_role_key: Optional[str], timeout: int = 30):
        self.url = (url or "").rstrip('/')
        self.service_role_key = service_role_key
        self.timeout = timeout

        if not url or not service_role_key:
            logger.warning("SupabaseIdentityProvider not fully configured, calls will fail")
        else:
            logger.info(f"SupabaseIdentityProvider initialized: url={self.url}")

    async def update_role_metadata(self, user_id: str, role: str) -> dict:
        """
        Set app_metadata.role for an identity provider user.

        Args:
            user_id: Identity provider user id
            role: Role name (BASE / ASSOCIATE / MANAGER)
        """
        if not self.url or not self.service_role_key:
            raise ExternalDependencyError("Supabase not configured")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.put(
                        f"{self.url}/auth/v1/admin/users/{user_id}",
                        headers={
                            "apikey": self.service_role_key,
                            "Authorization": f"Bearer {self.service_role_key}",
                        },
                        json={"app_metadata": {"role": role}},
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status == 200:
                        logger.info(f"Identity metadata synced: user={user_id}, role={role}")
                        return await response.json()

                    error_text = await response.text()
                    logger.error(f"Supabase API error: {response.status} - {error_text}")
                    raise ExternalDependencyError(
                        f"Supabase returned {response.status}",
                        details={"userId": user_id, "body": error_text[:500]}
                    )

        except aiohttp.ClientError as e:
            logger.error(f"HTTP error while syncing role for {user_id}: {e}")
            raise ExternalDependencyError(f"Supabase unreachable: {e}")
