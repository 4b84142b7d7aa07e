from supabase import AsyncClient, Client, acreate_client, create_client

from app.core.config import Settings


def create_supabase(settings: Settings) -> Client:
    """Service-role client shared by the storage and table boundaries."""
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)


def create_auth_client(settings: Settings) -> Client:
    """Short-lived anon client for sign-up / sign-in.

    Signing in stores a session on the client, so these calls never go through
    the shared service-role client.
    """
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)


async def create_async_supabase(settings: Settings) -> AsyncClient:
    """Async client used only for the realtime change feed."""
    return await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
