import asyncio
import hmac
import html
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from api.models import Brief, BriefStatus
from api.services.context import ServiceContext
from api.updates import (
    Command,
    PlainText,
    TelegramMessage,
    TelegramUpdate,
    Unrecognized,
    Unsupported,
    VoiceAttachment,
    classify,
)
from lib.config import Settings
from lib.error_handler import AppError, ErrorHandler, StageError, StageTimeout, UnusableTranscript

logger = logging.getLogger(__name__)

T = TypeVar('T')

SECRET_HEADER = 'X-Telegram-Bot-Api-Secret-Token'

VOICE_PROMPT_MESSAGE = (
    "🎤 Please send a <b>voice note</b> with your sermon topic or scripture passage.\n\n"
    "I work best with spoken thoughts rather than text!"
)
PROCESSING_NOTICE = "🎙️ Got your voice note! Processing...\n\nThis usually takes 30-60 seconds."


def reply_for_command(command: Command, chat_id: int, settings: Settings) -> str:
    """Canned reply for a bot command."""
    if command.name == 'link':
        return (
            "To link your Telegram account with Lighted, click here:\n\n"
            f"{settings.link_url(chat_id)}\n\n"
            "After linking, all your briefs will appear in your library."
        )
    return (
        "Welcome to <b>Lighted</b>! ✨\n\n"
        "Send me a voice note with your sermon topic, scripture passage, or theological question, "
        "and I'll generate an exegesis brief for you.\n\n"
        f"Your briefs will be available at {settings.app_base_url.rstrip('/')}/briefs "
        "after you link your account."
    )


def brief_ready_message(brief: Brief, settings: Settings) -> str:
    return (
        "✅ <b>Your brief is ready!</b>\n\n"
        f"📖 <b>{html.escape(brief.title)}</b>\n\n"
        "View and export your exegesis:\n"
        f"{settings.brief_url(brief.id)}\n\n"
        "💡 Use /link to connect your Lighted account and access all your briefs from the web."
    )


class TelegramHandler:
    def __init__(self, services: ServiceContext):
        self.services = services
        self.settings = services.settings
        self.error_handler = ErrorHandler()

    def is_authorized(self, secret_header: Optional[str]) -> bool:
        expected = self.settings.telegram_webhook_secret
        if not expected:
            return True
        if not secret_header:
            return False
        return hmac.compare_digest(secret_header.encode(), expected.encode())

    async def handle_update(self, payload: Any, secret_header: Optional[str] = None) -> None:
        """Handle one webhook delivery.

        Never raises: Telegram redelivers anything that is not acknowledged,
        so every outcome ends in a 200 from the route.
        """
        if not self.is_authorized(secret_header):
            logger.warning("Rejected Telegram update with missing or invalid secret token")
            return

        try:
            if not isinstance(payload, dict):
                logger.warning(f"Ignoring non-object webhook payload: {type(payload).__name__}")
                return
            try:
                update = TelegramUpdate.from_payload(payload)
            except (KeyError, TypeError, PydanticValidationError) as e:
                logger.warning(f"Ignoring malformed Telegram update: {str(e)}")
                return

            await self.dispatch(update)

        except Exception as e:
            logger.error(f"Telegram webhook error: {str(e)}", exc_info=True)

    async def dispatch(self, update: TelegramUpdate) -> None:
        event = classify(update)
        message = update.message

        if isinstance(event, Unrecognized):
            logger.info(f"Ignoring non-message update {update.update_id}")
        elif isinstance(event, Command):
            logger.info(f"Command /{event.name} from chat {message.chat.id}")
            await self.send_reply_safely(message.chat.id, reply_for_command(event, message.chat.id, self.settings))
        elif isinstance(event, VoiceAttachment):
            logger.info(f"Voice note from chat {message.chat.id}")
            await self.handle_voice_message(message, event)
        elif isinstance(event, (PlainText, Unsupported)):
            logger.info(f"Non-voice message from chat {message.chat.id}")
            await self.send_reply_safely(message.chat.id, VOICE_PROMPT_MESSAGE)
        else:
            raise TypeError(f"Unhandled update classification: {event!r}")

    async def handle_voice_message(self, message: TelegramMessage, voice: VoiceAttachment) -> Optional[Brief]:
        """Turn a voice note into a stored brief and reply with its link.

        Returns the brief, or None when any stage failed; in that case the
        user gets exactly one failure reply and nothing is stored.
        """
        chat_id = message.chat.id
        settings = self.settings

        if settings.send_processing_notice:
            await self.send_reply_safely(chat_id, PROCESSING_NOTICE)

        try:
            audio_data = await self._run_stage(
                'download', settings.download_timeout,
                lambda: self.services.telegram.fetch_media(voice.file_id)
            )

            transcript = await self._run_stage(
                'transcription', settings.transcription_timeout,
                lambda: self.services.audio.transcribe(audio_data, voice.filename, voice.mime_type)
            )
            self.services.audio.check_transcript(transcript)

            exegesis = await self._run_stage(
                'generation', settings.generation_timeout,
                lambda: self.services.exegesis.generate(transcript)
            )

            # The write cannot be cancelled once handed to a thread, so it is
            # bounded by the PostgREST client timeout instead of a deadline here
            brief = await self._run_stage(
                'persistence', None,
                lambda: self._persist(message, voice, transcript, exegesis)
            )

        except (UnusableTranscript, StageError) as e:
            await self.send_reply_safely(chat_id, self.error_handler.handle_pipeline_error(e))
            return None

        logger.info(f"Brief {brief.id} stored for chat {chat_id}")
        await self.send_reply_safely(chat_id, brief_ready_message(brief, settings))
        return brief

    async def _persist(self, message: TelegramMessage, voice: VoiceAttachment, transcript: str, exegesis) -> Brief:
        sender = message.from_user
        telegram_user_id = str(sender.id if sender else message.chat.id)
        display_name = sender.first_name if sender else None
        storage = self.services.storage

        def write() -> Brief:
            user = storage.find_or_create_telegram_user(telegram_user_id, display_name)
            return storage.create_brief(
                user_id=user.id,
                content=exegesis,
                transcript=transcript,
                status=BriefStatus.COMPLETED,
                telegram_message_id=str(message.message_id),
                telegram_chat_id=str(message.chat.id),
                audio_file_id=voice.file_id,
                audio_duration=voice.duration,
            )

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, write)

    async def _run_stage(self, stage: str, timeout: Optional[float], step: Callable[[], Awaitable[T]]) -> T:
        logger.info(f"Starting {stage} stage")
        try:
            if timeout is None:
                result = await step()
            else:
                result = await asyncio.wait_for(step(), timeout=timeout)
        except asyncio.TimeoutError as e:
            if timeout is None:
                raise StageError(stage, "timed out") from e
            raise StageTimeout(stage, timeout)
        except AppError as e:
            if isinstance(e, (StageError, UnusableTranscript)):
                raise
            raise StageError(stage, e.message) from e
        except Exception as e:
            raise StageError(stage, str(e)) from e
        logger.info(f"Finished {stage} stage")
        return result

    async def send_reply_safely(self, chat_id: int, text: str) -> Optional[Dict[str, Any]]:
        """Best-effort reply; delivery failures are logged, never raised."""
        try:
            return await asyncio.wait_for(
                self.services.telegram.send_message(chat_id, text),
                timeout=self.settings.reply_timeout
            )
        except Exception as e:
            logger.error(f"Failed to send reply to chat {chat_id}: {str(e)}")
            return None
