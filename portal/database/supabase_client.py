from typing import Dict, Optional

from supabase import create_client, Client
from portal.config.settings import settings

ANON = "anon"
SERVICE_ROLE = "service_role"


class SupabaseClient:
    """Process-wide Supabase clients, one per key role."""

    _clients: Dict[str, Client] = {}

    @classmethod
    def _key_for(cls, role: str) -> Optional[str]:
        if role == SERVICE_ROLE:
            return settings.supabase_service_role_key
        return settings.supabase_key

    @classmethod
    def _get(cls, role: str) -> Client:
        if role not in cls._clients:
            cls._clients[role] = create_client(settings.supabase_url, cls._key_for(role))
        return cls._clients[role]

    @classmethod
    def get_client(cls) -> Client:
        """Anon-key client; row level security applies to the caller's JWT."""
        return cls._get(ANON)

    @classmethod
    def get_service_client(cls) -> Client:
        """Service-role client for webhooks, cron endpoints and background loops.
        Falls back to the anon client when no service key is configured."""
        if not settings.supabase_service_role_key:
            return cls.get_client()
        return cls._get(SERVICE_ROLE)

    @classmethod
    def reset_client(cls):
        cls._clients.clear()


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def get_service_supabase() -> Client:
    return SupabaseClient.get_service_client()
