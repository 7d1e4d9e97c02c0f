import json
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.models import Brief, BriefStatus, ExegesisContent, User, estimate_read_time
from api.routes import create_app
from api.services.audio import AudioService
from api.services.context import ServiceContext
from api.services.exegesis import ExegesisService
from api.telegram_handler import TelegramHandler
from lib.config import Settings
from lib.error_handler import ConflictError, NotFoundError, ValidationError

TEST_TRANSCRIPT = "What does John 3:16 mean for evangelism today?"

TEST_EXEGESIS = {
    "title": "God's Love for the World",
    "category": "new-testament",
    "greekInsights": [
        {
            "term": "ἀγαπάω",
            "transliteration": "agapaō",
            "meaning": "To love with self-giving commitment",
            "usage": "Describes the Father's love for the world in John 3:16"
        }
    ],
    "historicalContext": "Jesus speaks with Nicodemus, a Pharisee, at night.",
    "outlinePoints": [
        {"title": "The source of love", "content": "God so loved the world (John 3:16a)."},
        {"title": "The gift", "content": "He gave his only Son (John 3:16b)."}
    ]
}


def make_completion(content: Optional[str]) -> MagicMock:
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content=content))]
    return completion


def voice_update(file_id="abc", chat_id=555, user_id=777, first_name="Sam", message_id=42):
    return {
        "update_id": 1001,
        "message": {
            "message_id": message_id,
            "from": {"id": user_id, "first_name": first_name, "username": "sam"},
            "chat": {"id": chat_id, "type": "private"},
            "date": 1700000000,
            "voice": {
                "file_id": file_id,
                "file_unique_id": "u-" + file_id,
                "duration": 12,
                "mime_type": "audio/ogg",
                "file_size": 20480
            }
        }
    }


def text_update(text, chat_id=555, user_id=777):
    return {
        "update_id": 1002,
        "message": {
            "message_id": 43,
            "from": {"id": user_id, "first_name": "Sam"},
            "chat": {"id": chat_id, "type": "private"},
            "date": 1700000000,
            "text": text
        }
    }


class FakeStorage:
    """In-memory stand-in for StorageService with the same method surface."""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.briefs: Dict[str, Brief] = {}

    def add_user(self, name=None, email=None, telegram_chat_id=None) -> User:
        user = User(id=str(uuid.uuid4()), name=name, email=email, telegram_chat_id=telegram_chat_id)
        self.users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def get_user_by_telegram_id(self, telegram_chat_id: str) -> Optional[User]:
        for user in self.users.values():
            if user.telegram_chat_id == telegram_chat_id:
                return user
        return None

    def find_or_create_telegram_user(self, telegram_user_id: str, display_name: Optional[str] = None) -> User:
        user = self.get_user_by_telegram_id(telegram_user_id)
        if user:
            return user
        return self.add_user(name=display_name or 'Telegram User', telegram_chat_id=telegram_user_id)

    def link_telegram_account(self, user_id: str, telegram_chat_id: str) -> int:
        if user_id not in self.users:
            raise NotFoundError("User not found")
        moved = 0
        existing = self.get_user_by_telegram_id(telegram_chat_id)
        if existing and existing.id != user_id:
            if existing.email is not None:
                raise ConflictError("Telegram account is already linked to another user")
            for brief_id, brief in list(self.briefs.items()):
                if brief.user_id == existing.id:
                    self.briefs[brief_id] = brief.model_copy(update={'user_id': user_id})
                    moved += 1
            del self.users[existing.id]
        self.users[user_id] = self.users[user_id].model_copy(update={'telegram_chat_id': telegram_chat_id})
        return moved

    def create_brief(self, user_id: str, content: ExegesisContent, transcript=None,
                     status=BriefStatus.COMPLETED, description=None, telegram_message_id=None,
                     telegram_chat_id=None, audio_file_id=None, audio_duration=None) -> Brief:
        now = datetime.now(timezone.utc)
        brief = Brief(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=content.title,
            description=description,
            category=content.category,
            original_transcript=transcript,
            greek_insights=[i.model_dump() for i in content.greek_insights],
            historical_context=content.historical_context,
            outline_points=[p.model_dump() for p in content.outline_points],
            telegram_message_id=telegram_message_id,
            telegram_chat_id=telegram_chat_id,
            audio_file_id=audio_file_id,
            audio_duration=audio_duration,
            read_time=estimate_read_time(transcript, content.historical_context),
            status=status,
            created_at=now,
            updated_at=now,
        )
        self.briefs[brief.id] = brief
        return brief

    def get_brief(self, brief_id: str) -> Optional[Brief]:
        return self.briefs.get(brief_id)

    def list_briefs(self, user_id=None, telegram_chat_id=None) -> List[Brief]:
        if user_id:
            found = [b for b in self.briefs.values() if b.user_id == user_id]
        else:
            found = [b for b in self.briefs.values() if b.telegram_chat_id == telegram_chat_id]
        return sorted(found, key=lambda b: b.updated_at, reverse=True)

    def update_brief(self, brief_id: str, changes: dict) -> Brief:
        brief = self.briefs[brief_id]
        update = {}
        if changes.get('isBookmarked') is not None:
            update['is_bookmarked'] = changes['isBookmarked']
        if changes.get('status') is not None:
            update['status'] = BriefStatus(changes['status'])
        for field in ('title', 'description'):
            if changes.get(field) is not None:
                update[field] = changes[field]
        if 'title' in update:
            update['title'] = str(update['title']).strip()
            if not update['title']:
                raise ValidationError("Title must not be blank")
        self.briefs[brief_id] = brief.model_copy(update=update)
        return self.briefs[brief_id]

    def delete_brief(self, brief_id: str) -> None:
        self.briefs.pop(brief_id, None)


@pytest.fixture
def settings():
    return Settings(
        telegram_bot_token='test-token',
        telegram_webhook_secret=None,
        openai_api_key='test-key',
        supabase_url='https://test.supabase.co',
        supabase_key='test-key',
        app_base_url='https://lighted.test',
        api_secret=None,
        send_processing_notice=False,
        download_timeout=1,
        transcription_timeout=1,
        generation_timeout=1,
        storage_timeout=1,
        reply_timeout=1,
    )


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.audio.transcriptions.create.return_value = TEST_TRANSCRIPT
    client.chat.completions.create.return_value = make_completion(json.dumps(TEST_EXEGESIS))
    return client


@pytest.fixture
def telegram():
    telegram = MagicMock()
    telegram.fetch_media = AsyncMock(return_value=b"OggS-fake-audio")
    telegram.send_message = AsyncMock(return_value={"message_id": 1})
    return telegram


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def services(settings, openai_client, telegram, storage):
    return ServiceContext(
        settings=settings,
        telegram=telegram,
        audio=AudioService(openai_client, min_length=settings.min_transcript_length),
        exegesis=ExegesisService(openai_client),
        storage=storage,
    )


@pytest.fixture
def handler(services):
    return TelegramHandler(services)


@pytest.fixture
def test_client(services):
    app = create_app(services)
    app.config['TESTING'] = True
    return app.test_client()


def sent_texts(telegram) -> List[str]:
    return [call.args[1] for call in telegram.send_message.await_args_list]
