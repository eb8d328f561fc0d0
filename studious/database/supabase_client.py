from supabase import acreate_client, create_client, AsyncClient, Client
from studious.config import settings


class SupabaseClient:
    _client: Client = None
    _service_client: Client = None
    _async_client: AsyncClient = None

    @classmethod
    def get_client(cls) -> Client:
        if cls._client is None:
            cls._client = create_client(settings.supabase_url, settings.supabase_key)
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """Client with service_role key; bypasses RLS. Use for cascading deletes."""
        if cls._service_client is None and settings.supabase_service_role_key:
            cls._service_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key
            )
        return cls._service_client or cls.get_client()

    @classmethod
    async def get_async_client(cls) -> AsyncClient:
        """Async client; the only flavour that can open Realtime channels."""
        if cls._async_client is None:
            cls._async_client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return cls._async_client


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def get_service_supabase() -> Client:
    return SupabaseClient.get_service_client()


async def get_async_supabase() -> AsyncClient:
    return await SupabaseClient.get_async_client()
