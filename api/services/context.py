import logging
from dataclasses import dataclass

from api.services.audio import AudioService
from api.services.exegesis import ExegesisService
from api.services.storage import StorageService
from api.services.telegram import TelegramService
from lib.config import Settings
from lib.database import create_supabase_client
from lib.openai_client import create_openai_client

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    """Everything a request handler talks to, built once and passed in."""

    settings: Settings
    telegram: TelegramService
    audio: AudioService
    exegesis: ExegesisService
    storage: StorageService


def build_services(settings: Settings) -> ServiceContext:
    logger.info("Initializing OpenAI client...")
    openai_client = create_openai_client(settings)
    logger.info("OpenAI client initialized successfully")

    logger.info("Initializing Supabase client...")
    supabase = create_supabase_client(settings)
    logger.info("Supabase client initialized successfully")

    logger.info("Initializing services...")
    try:
        telegram = TelegramService(
            bot_token=settings.telegram_bot_token,
            api_url=settings.telegram_api_url,
            timeout=settings.download_timeout
        )

        audio = AudioService(
            openai_client=openai_client,
            model=settings.transcription_model,
            language=settings.transcription_language,
            min_length=settings.min_transcript_length
        )

        exegesis = ExegesisService(
            openai_client=openai_client,
            model=settings.generation_model,
            temperature=settings.generation_temperature,
            max_tokens=settings.generation_max_tokens
        )

        storage = StorageService(supabase_client=supabase)

        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {str(e)}")
        raise

    return ServiceContext(
        settings=settings,
        telegram=telegram,
        audio=audio,
        exegesis=exegesis,
        storage=storage
    )
