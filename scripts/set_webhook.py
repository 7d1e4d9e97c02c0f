import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from api.services.telegram import TelegramService  # noqa: E402
from lib.config import get_settings  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def set_webhook():
    load_dotenv()
    settings = get_settings()
    telegram = TelegramService(settings.telegram_bot_token, settings.telegram_api_url)

    webhook_url = f"{settings.app_base_url.rstrip('/')}/telegram/webhook"
    logger.info(f"Registering webhook: {webhook_url}")
    if not settings.telegram_webhook_secret:
        logger.warning("TELEGRAM_WEBHOOK_SECRET is not set; updates will not be authenticated")

    await telegram.set_webhook(
        webhook_url,
        secret_token=settings.telegram_webhook_secret,
        allowed_updates=['message']
    )
    logger.info("Webhook registered successfully")


if __name__ == "__main__":
    asyncio.run(set_webhook())
