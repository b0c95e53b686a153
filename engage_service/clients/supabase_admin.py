"""
Hosted backend admin client - auth admin users and object storage

Uses the service-role key against the GoTrue admin API and the Storage
REST API. Only the calls the dashboard needs are wrapped.
"""

import logging
from typing import Optional, Dict, Any

import httpx

from ..config import get_engage_settings

logger = logging.getLogger(__name__)


class SupabaseAdminError(Exception):
    """Hosted backend admin call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class SupabaseAdminClient:
    """
    Service-role client for auth user management and media storage.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_engage_settings()
        self.url = (url or settings.supabase_url or "").rstrip("/")
        self.service_role_key = service_role_key or settings.supabase_service_role_key
        self.bucket = settings.media_bucket

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if not (self.url and self.service_role_key):
            raise ValueError("Hosted backend admin credentials are not configured")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers={
                    "apikey": self.service_role_key,
                    "Authorization": f"Bearer {self.service_role_key}",
                },
                timeout=30.0,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _check(response: httpx.Response) -> Dict[str, Any]:
        if response.is_success:
            return response.json() if response.content else {}
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("msg") or body.get("message") or body.get("error_description") or response.text
        logger.error(f"Hosted backend admin call failed ({response.status_code}): {message}")
        raise SupabaseAdminError(message, status=response.status_code)

    # =========================================================================
    # Auth admin
    # =========================================================================

    async def create_user(self, email: str, password: str, full_name: str) -> Dict[str, Any]:
        """
        Create a confirmed auth user.

        Returns:
            Auth user object (id, email, ...)
        """
        client = await self._get_client()
        response = await client.post(
            "/auth/v1/admin/users",
            json={
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": {"full_name": full_name},
            },
        )
        return self._check(response)

    async def update_user_password(self, user_id: str, password: str) -> Dict[str, Any]:
        """Set a new password for an auth user."""
        client = await self._get_client()
        response = await client.put(f"/auth/v1/admin/users/{user_id}", json={"password": password})
        return self._check(response)

    async def delete_user(self, user_id: str) -> None:
        """Delete an auth user."""
        client = await self._get_client()
        response = await client.delete(f"/auth/v1/admin/users/{user_id}")
        self._check(response)

    # =========================================================================
    # Storage
    # =========================================================================

    async def upload_object(self, path: str, content: bytes, content_type: str) -> str:
        """
        Upload a file to the media bucket.

        Returns:
            Public URL of the stored object
        """
        client = await self._get_client()
        response = await client.post(
            f"/storage/v1/object/{self.bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "false"},
        )
        self._check(response)
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{path}"


def get_supabase_admin() -> SupabaseAdminClient:
    """Get a hosted backend admin client."""
    return SupabaseAdminClient()
