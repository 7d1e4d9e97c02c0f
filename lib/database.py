import logging

from supabase import create_client, Client, ClientOptions

from lib.config import Settings
from lib.error_handler import AppError

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Settings) -> Client:
    """Create the Supabase client used by the storage service.

    Database calls run in worker threads that cannot be cancelled, so their
    deadline is the PostgREST HTTP timeout rather than an asyncio one.
    """
    if not settings.supabase_url or not settings.supabase_key:
        raise AppError("SUPABASE_URL and SUPABASE_KEY must be set")
    try:
        return create_client(
            settings.supabase_url,
            settings.supabase_key,
            options=ClientOptions(postgrest_client_timeout=settings.storage_timeout)
        )
    except Exception as e:
        logger.error(f"Error initializing Supabase client: {str(e)}")
        raise
