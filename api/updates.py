"""Inbound Telegram payloads and their classification.

An update is decoded once into pydantic models, then `classify` turns it into
exactly one of the variants below. The handler matches on the variant type
instead of re-inspecting the raw message text.
"""
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

KNOWN_COMMANDS = ('start', 'link')

_EXTENSIONS = {
    'audio/ogg': 'ogg',
    'audio/opus': 'ogg',
    'audio/mpeg': 'mp3',
    'audio/mp3': 'mp3',
    'audio/mp4': 'm4a',
    'audio/m4a': 'm4a',
    'audio/x-m4a': 'm4a',
    'audio/aac': 'aac',
    'audio/wav': 'wav',
    'audio/x-wav': 'wav',
    'audio/webm': 'webm',
    'audio/amr': 'amr',
}


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int
    first_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: int
    type: Optional[str] = None


class TelegramVoice(BaseModel):
    model_config = ConfigDict(extra='ignore')

    file_id: str
    file_unique_id: Optional[str] = None
    duration: Optional[int] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    file_name: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(extra='ignore')

    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = None
    date: Optional[int] = None
    text: Optional[str] = None
    voice: Optional[TelegramVoice] = None
    audio: Optional[TelegramVoice] = None

    @classmethod
    def from_payload(cls, payload: dict) -> 'TelegramMessage':
        data = dict(payload)
        # "from" is a keyword, so it cannot be a field name
        if 'from' in data:
            data['from_user'] = data.pop('from')
        return cls.model_validate(data)


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra='ignore')

    update_id: int
    message: Optional[TelegramMessage] = None

    @classmethod
    def from_payload(cls, payload: dict) -> 'TelegramUpdate':
        message = payload.get('message')
        return cls(
            update_id=payload['update_id'],
            message=TelegramMessage.from_payload(message) if message is not None else None,
        )


@dataclass(frozen=True)
class Command:
    name: str
    argument: str = ''


@dataclass(frozen=True)
class VoiceAttachment:
    file_id: str
    filename: str
    mime_type: str
    duration: Optional[int] = None
    file_size: Optional[int] = None


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class Unsupported:
    """A message with nothing we can work with (photo, sticker, ...)."""


@dataclass(frozen=True)
class Unrecognized:
    """Not a message update at all; acknowledged and dropped."""


Classification = Union[Command, VoiceAttachment, PlainText, Unsupported, Unrecognized]


def filename_for(mime_type: Optional[str], file_name: Optional[str] = None) -> str:
    if file_name:
        return file_name
    extension = _EXTENSIONS.get((mime_type or '').lower(), 'ogg')
    return f"voice.{extension}"


def parse_command(text: str) -> Optional[Command]:
    """Return the command if the text starts with a known bot command."""
    stripped = text.strip()
    if not stripped.startswith('/'):
        return None
    token, _, argument = stripped.partition(' ')
    name = token[1:].split('@', 1)[0].lower()
    if name not in KNOWN_COMMANDS:
        return None
    return Command(name=name, argument=argument.strip())


def classify(update: TelegramUpdate) -> Classification:
    message = update.message
    if message is None:
        return Unrecognized()

    attachment = message.voice or message.audio
    if attachment is not None:
        mime_type = attachment.mime_type or 'audio/ogg'
        return VoiceAttachment(
            file_id=attachment.file_id,
            filename=filename_for(mime_type, attachment.file_name),
            mime_type=mime_type,
            duration=attachment.duration,
            file_size=attachment.file_size,
        )

    if message.text is not None:
        command = parse_command(message.text)
        if command is not None:
            return command
        return PlainText(text=message.text)

    return Unsupported()
