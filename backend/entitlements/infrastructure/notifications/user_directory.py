"""
User Directory

Looks up account emails through the Supabase Auth admin API. Users live in
Supabase Auth, not in this service's tables.
"""

import asyncio
import logging
from typing import Optional
from uuid import UUID

from supabase import Client, create_client

from entitlements.config.settings import get_settings


logger = logging.getLogger(__name__)


class UserDirectory:
    """Resolves user ids to email addresses. Lookup failures yield None."""

    def __init__(self):
        self._client: Optional[Client] = None

    @property
    def client(self) -> Optional[Client]:
        if self._client is None:
            settings = get_settings()
            if not settings.supabase_url or not settings.supabase_service_role_key:
                return None
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key,
            )
        return self._client

    async def get_email(self, user_id: UUID) -> Optional[str]:
        client = self.client
        if client is None:
            logger.warning("Supabase admin client not configured, cannot resolve user emails")
            return None

        try:
            response = await asyncio.to_thread(
                client.auth.admin.get_user_by_id, str(user_id)
            )
        except Exception as e:
            # gotrue raises its own AuthError family; any failure just skips the email
            logger.warning(f"Could not look up user {user_id}: {e}")
            return None

        user = getattr(response, "user", None)
        return getattr(user, "email", None)


_user_directory_instance: Optional[UserDirectory] = None


def get_user_directory() -> UserDirectory:
    global _user_directory_instance

    if _user_directory_instance is None:
        _user_directory_instance = UserDirectory()

    return _user_directory_instance
