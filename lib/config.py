from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    # Telegram settings
    telegram_bot_token: str = ''
    telegram_webhook_secret: Optional[str] = None
    telegram_api_url: str = 'https://api.telegram.org'

    # OpenAI settings (any OpenAI-compatible endpoint, e.g. Groq)
    openai_api_key: str = ''
    openai_base_url: Optional[str] = None
    transcription_model: str = 'whisper-1'
    transcription_language: str = 'en'
    generation_model: str = 'gpt-4o-mini'
    generation_temperature: float = 0.7
    generation_max_tokens: int = 4096

    # Supabase settings
    supabase_url: str = ''
    supabase_key: str = ''

    # Web application
    app_base_url: str = 'http://localhost:3000'
    api_secret: Optional[str] = None

    # Per-stage deadlines, in seconds
    download_timeout: float = 30
    transcription_timeout: float = 60
    generation_timeout: float = 90
    storage_timeout: float = 15
    reply_timeout: float = 15

    min_transcript_length: int = 10
    send_processing_notice: bool = True

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token)

    def brief_url(self, brief_id: str) -> str:
        return f"{self.app_base_url.rstrip('/')}/brief/{brief_id}"

    def link_url(self, chat_id: int) -> str:
        return f"{self.app_base_url.rstrip('/')}/link-telegram?chatId={chat_id}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
