"""Supabase client construction for the persistent stores."""

from supabase import Client, create_client

from tutor_guard.core.config import Settings


def supabase_configured(settings: Settings) -> bool:
    return bool(settings.SUPABASE_URL and settings.SUPABASE_SERVICE_ROLE_KEY)


def create_supabase(settings: Settings) -> Client:
    """
    Build a Supabase client for one pipeline context.

    Args:
        settings: Must carry SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY

    Returns:
        Client authenticated with the service role key

    Raises:
        RuntimeError: If Supabase is not configured or the client cannot be created
    """
    if not supabase_configured(settings):
        raise RuntimeError("Supabase is not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)")
    try:
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e
