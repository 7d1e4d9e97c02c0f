import logging

from openai import OpenAI

from lib.config import Settings

logger = logging.getLogger(__name__)


def create_openai_client(settings: Settings) -> OpenAI:
    """Build the client shared by transcription and generation."""
    kwargs = {
        'api_key': settings.openai_api_key,
        'timeout': max(settings.transcription_timeout, settings.generation_timeout),
        'max_retries': 0,
    }
    if settings.openai_base_url:
        kwargs['base_url'] = settings.openai_base_url
        logger.info(f"Using OpenAI-compatible endpoint: {settings.openai_base_url}")
    return OpenAI(**kwargs)
