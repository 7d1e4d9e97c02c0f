import logging
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class TelegramAPIError(Exception):
    pass


class TelegramService:
    def __init__(self, bot_token: str, api_url: str = 'https://api.telegram.org', timeout: float = 30):
        if not bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN not configured")
        self.bot_token = bot_token
        self.api_url = api_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        logger.info(f"Telegram service initialized for API at {self.api_url}")

    def _method_url(self, method: str) -> str:
        return f"{self.api_url}/bot{self.bot_token}/{method}"

    def _file_url(self, file_path: str) -> str:
        return f"{self.api_url}/file/bot{self.bot_token}/{file_path}"

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(self._method_url(method), json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Telegram {method} failed with {response.status}: {error_text}")
                    raise TelegramAPIError(f"Telegram {method} returned {response.status}")
                data = await response.json()

        if not data.get('ok'):
            raise TelegramAPIError(f"Telegram {method} error: {data.get('description')}")
        return data.get('result')

    async def get_file(self, file_id: str) -> str:
        """Resolve a file handle to the path it can be downloaded from."""
        logger.info(f"Resolving Telegram file {file_id}")
        result = await self._call('getFile', {'file_id': file_id})
        file_path = (result or {}).get('file_path')
        if not file_path:
            raise TelegramAPIError(f"No file_path returned for file {file_id}")
        return file_path

    async def download_file(self, file_path: str) -> bytes:
        logger.info("Downloading audio file...")
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(self._file_url(file_path)) as response:
                if response.status != 200:
                    logger.error(f"Failed to download audio: {response.status}")
                    raise TelegramAPIError(f"File download returned {response.status}")
                audio_data = await response.read()

        logger.info(f"Audio file downloaded: {len(audio_data)} bytes")
        return audio_data

    async def fetch_media(self, file_id: str) -> bytes:
        file_path = await self.get_file(file_id)
        return await self.download_file(file_path)

    async def send_message(self, chat_id: int, text: str, parse_mode: str = 'HTML') -> Dict[str, Any]:
        logger.info(f"Sending message to chat {chat_id}: {text[:20]}...")
        return await self._call('sendMessage', {
            'chat_id': chat_id,
            'text': text,
            'parse_mode': parse_mode,
        })

    async def set_webhook(
        self,
        url: str,
        secret_token: Optional[str] = None,
        allowed_updates: Optional[List[str]] = None,
    ) -> Any:
        payload: Dict[str, Any] = {'url': url}
        if secret_token:
            payload['secret_token'] = secret_token
        if allowed_updates is not None:
            payload['allowed_updates'] = allowed_updates
        return await self._call('setWebhook', payload)
