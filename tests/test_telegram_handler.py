import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from api.models import BriefStatus, Category, ExegesisContent
from api.telegram_handler import (
    PROCESSING_NOTICE,
    VOICE_PROMPT_MESSAGE,
    TelegramHandler,
    brief_ready_message,
    reply_for_command,
)
from api.updates import Command
from conftest import TEST_EXEGESIS, FakeStorage, make_completion, sent_texts, text_update, voice_update
from lib.error_handler import (
    COULD_NOT_UNDERSTAND_MESSAGE,
    PROCESSING_FAILED_MESSAGE,
    TIMEOUT_MESSAGE,
)


@pytest.mark.asyncio
async def test_voice_note_creates_brief_and_replies_with_link(handler, telegram, storage, openai_client):
    await handler.handle_update(voice_update(file_id="abc", chat_id=555, user_id=777, first_name="Sam"))

    telegram.fetch_media.assert_awaited_once_with("abc")
    assert len(storage.users) == 1
    user = next(iter(storage.users.values()))
    assert user.telegram_chat_id == "777"
    assert user.name == "Sam"
    assert user.email is None

    assert len(storage.briefs) == 1
    brief = next(iter(storage.briefs.values()))
    assert brief.user_id == user.id
    assert brief.status == BriefStatus.COMPLETED
    assert brief.category == Category.NEW_TESTAMENT
    assert brief.original_transcript == "What does John 3:16 mean for evangelism today?"
    assert brief.telegram_chat_id == "555"
    assert brief.telegram_message_id == "42"
    assert brief.audio_file_id == "abc"

    texts = sent_texts(telegram)
    assert len(texts) == 1
    assert f"https://lighted.test/brief/{brief.id}" in texts[0]
    assert telegram.send_message.await_args.args[0] == 555


@pytest.mark.asyncio
async def test_existing_account_is_reused(handler, storage):
    existing = storage.add_user(name="Sam", telegram_chat_id="777")

    await handler.handle_update(voice_update(user_id=777))
    await handler.handle_update(voice_update(user_id=777, message_id=43))

    assert list(storage.users) == [existing.id]
    assert len(storage.briefs) == 2
    assert all(b.user_id == existing.id for b in storage.briefs.values())


@pytest.mark.asyncio
async def test_short_transcript_sends_could_not_understand(handler, telegram, storage, openai_client):
    openai_client.audio.transcriptions.create.return_value = "uh hm"

    await handler.handle_update(voice_update())

    assert storage.briefs == {}
    assert storage.users == {}
    assert sent_texts(telegram) == [COULD_NOT_UNDERSTAND_MESSAGE]
    openai_client.chat.completions.create.assert_not_called()


@pytest.mark.asyncio
async def test_download_failure_sends_generic_failure(handler, telegram, storage, openai_client):
    telegram.fetch_media.side_effect = RuntimeError("file not found")

    await handler.handle_update(voice_update())

    assert storage.briefs == {}
    assert sent_texts(telegram) == [PROCESSING_FAILED_MESSAGE]
    openai_client.audio.transcriptions.create.assert_not_called()


@pytest.mark.asyncio
async def test_transcription_failure_sends_generic_failure(handler, telegram, storage, openai_client):
    openai_client.audio.transcriptions.create.side_effect = RuntimeError("upstream 500")

    await handler.handle_update(voice_update())

    assert storage.briefs == {}
    assert sent_texts(telegram) == [PROCESSING_FAILED_MESSAGE]


@pytest.mark.asyncio
async def test_malformed_generation_sends_generic_failure(handler, telegram, storage, openai_client):
    openai_client.chat.completions.create.return_value = make_completion("{not valid json")

    await handler.handle_update(voice_update())

    assert storage.briefs == {}
    assert storage.users == {}
    assert sent_texts(telegram) == [PROCESSING_FAILED_MESSAGE]


@pytest.mark.asyncio
async def test_unknown_category_is_never_persisted(handler, storage, openai_client):
    openai_client.chat.completions.create.return_value = make_completion(
        json.dumps({"title": "Shepherd", "category": "wisdom-literature"})
    )
    openai_client.audio.transcriptions.create.return_value = "Walk me through Psalm 23 verse by verse"

    await handler.handle_update(voice_update())

    brief = next(iter(storage.briefs.values()))
    assert brief.category == Category.OLD_TESTAMENT


@pytest.mark.asyncio
async def test_persistence_failure_sends_generic_failure(handler, telegram, storage):
    storage.create_brief = MagicMock(side_effect=RuntimeError("db down"))

    await handler.handle_update(voice_update())

    assert sent_texts(telegram) == [PROCESSING_FAILED_MESSAGE]


@pytest.mark.asyncio
async def test_slow_stage_times_out_with_its_own_reply(handler, telegram, storage):
    async def slow_fetch(file_id):
        await asyncio.sleep(5)
        return b"audio"

    handler.settings.download_timeout = 0.05
    telegram.fetch_media = AsyncMock(side_effect=slow_fetch)

    await handler.handle_update(voice_update())

    assert storage.briefs == {}
    assert sent_texts(telegram) == [TIMEOUT_MESSAGE]


@pytest.mark.asyncio
async def test_reply_failure_keeps_the_brief(handler, telegram, storage):
    telegram.send_message.side_effect = RuntimeError("telegram down")

    await handler.handle_update(voice_update())

    assert len(storage.briefs) == 1
    telegram.send_message.assert_awaited_once()


@pytest.mark.asyncio
async def test_processing_notice_is_sent_first_when_enabled(services, telegram, storage):
    services.settings.send_processing_notice = True
    handler = TelegramHandler(services)

    await handler.handle_update(voice_update())

    texts = sent_texts(telegram)
    assert texts[0] == PROCESSING_NOTICE
    assert len(texts) == 2
    assert len(storage.briefs) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["hello there", "/unknown", "Romans 8:28"])
async def test_text_gets_voice_prompt(handler, telegram, storage, text):
    await handler.handle_update(text_update(text))

    assert sent_texts(telegram) == [VOICE_PROMPT_MESSAGE]
    assert storage.briefs == {}
    assert storage.users == {}
    telegram.fetch_media.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_text_message_gets_voice_prompt(handler, telegram):
    payload = text_update("x")
    del payload["message"]["text"]
    payload["message"]["sticker"] = {"file_id": "s1"}

    await handler.handle_update(payload)

    assert sent_texts(telegram) == [VOICE_PROMPT_MESSAGE]


@pytest.mark.asyncio
async def test_start_command_replies_with_welcome(handler, telegram, storage):
    await handler.handle_update(text_update("/start"))

    texts = sent_texts(telegram)
    assert len(texts) == 1
    assert "Welcome to <b>Lighted</b>" in texts[0]
    assert storage.users == {}


@pytest.mark.asyncio
async def test_link_command_replies_with_link_url(handler, telegram):
    await handler.handle_update(text_update("/link", chat_id=555))

    assert sent_texts(telegram) == [reply_for_command(Command(name="link"), 555, handler.settings)]
    assert "https://lighted.test/link-telegram?chatId=555" in sent_texts(telegram)[0]


@pytest.mark.asyncio
async def test_non_message_update_is_dropped(handler, telegram):
    await handler.handle_update({"update_id": 9, "callback_query": {"id": "1"}})

    telegram.send_message.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, [], "text", {"no_update_id": True}, {"update_id": 1, "message": {"text": "no chat"}}])
async def test_garbage_payloads_are_acknowledged(handler, telegram, payload):
    await handler.handle_update(payload)

    telegram.send_message.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "wrong-secret"])
async def test_bad_secret_means_no_external_calls(services, telegram, storage, openai_client, header):
    services.settings.telegram_webhook_secret = "s3cret"
    handler = TelegramHandler(services)

    await handler.handle_update(voice_update(), secret_header=header)

    telegram.fetch_media.assert_not_awaited()
    telegram.send_message.assert_not_awaited()
    openai_client.audio.transcriptions.create.assert_not_called()
    openai_client.chat.completions.create.assert_not_called()
    assert storage.briefs == {}
    assert storage.users == {}


@pytest.mark.asyncio
async def test_correct_secret_is_processed(services, storage):
    services.settings.telegram_webhook_secret = "s3cret"
    handler = TelegramHandler(services)

    await handler.handle_update(voice_update(), secret_header="s3cret")

    assert len(storage.briefs) == 1


def test_brief_title_is_escaped_in_reply(handler):
    content = ExegesisContent.model_validate({**TEST_EXEGESIS, "title": "Love <b>&</b> Law"})
    brief = FakeStorage().create_brief("u1", content)

    message = brief_ready_message(brief, handler.settings)

    assert "Love &lt;b&gt;&amp;&lt;/b&gt; Law" in message


@pytest.mark.asyncio
async def test_slow_write_is_awaited_and_reported_as_stored(handler, telegram, storage):
    create_brief = storage.create_brief

    def slow_create_brief(*args, **kwargs):
        time.sleep(0.3)
        return create_brief(*args, **kwargs)

    handler.settings.storage_timeout = 0.05
    storage.create_brief = slow_create_brief

    await handler.handle_update(voice_update())

    assert len(storage.briefs) == 1
    brief = next(iter(storage.briefs.values()))
    texts = sent_texts(telegram)
    assert len(texts) == 1
    assert f"https://lighted.test/brief/{brief.id}" in texts[0]
    assert TIMEOUT_MESSAGE not in texts
