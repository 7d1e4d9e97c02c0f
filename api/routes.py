import asyncio
import hmac
import logging
from typing import Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError as PydanticValidationError
from werkzeug.exceptions import HTTPException

from api.models import Brief, BriefStatus, ExegesisContent, coerce_category
from api.services.context import ServiceContext, build_services
from api.telegram_handler import SECRET_HEADER, TelegramHandler
from lib.config import get_settings
from lib.error_handler import (
    AppError,
    ForbiddenError,
    GenerationError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

USER_ID_HEADER = 'X-User-Id'


def create_app(services: Optional[ServiceContext] = None) -> Flask:
    """Build the Flask app around an explicit set of services."""
    if services is None:
        services = build_services(get_settings())

    app = Flask(__name__)
    app.config['SERVICES'] = services
    handler = TelegramHandler(services)
    settings = services.settings
    storage = services.storage

    async def run_blocking(func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    def require_api_secret() -> None:
        if not settings.api_secret:
            return
        auth_header = request.headers.get('Authorization', '')
        expected = f"Bearer {settings.api_secret}"
        if not hmac.compare_digest(auth_header.encode(), expected.encode()):
            raise UnauthorizedError()

    def current_user_id() -> str:
        user_id = request.headers.get(USER_ID_HEADER)
        if not user_id:
            raise UnauthorizedError()
        return user_id

    def load_owned_brief(brief_id: str, user_id: str) -> Brief:
        brief = storage.get_brief(brief_id)
        if brief is None:
            raise NotFoundError("Brief not found")
        if brief.user_id != user_id:
            raise ForbiddenError()
        return brief

    @app.before_request
    def check_api_secret():
        # The webhook authenticates with Telegram's own secret header
        if request.endpoint in ('telegram_webhook', 'telegram_webhook_status', 'root', None):
            return None
        require_api_secret()
        return None

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        if error.status_code >= 500:
            logger.error(f"Request failed: {error.message}")
        return jsonify({'error': error.message}), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.error(f"Unhandled error on {request.path}: {str(error)}", exc_info=error)
        return jsonify({'error': 'Internal server error'}), 500

    @app.route('/', methods=['GET'])
    def root():
        """Basic health check"""
        return {'status': 'healthy'}

    @app.route('/telegram/webhook', methods=['POST'])
    async def telegram_webhook():
        logger.info("Webhook received")
        payload = request.get_json(silent=True)
        await handler.handle_update(payload, request.headers.get(SECRET_HEADER))
        return jsonify({'ok': True}), 200

    @app.route('/telegram/webhook', methods=['GET'])
    def telegram_webhook_status():
        return jsonify({
            'status': 'Telegram webhook active',
            'configured': settings.telegram_configured
        })

    @app.route('/telegram/link', methods=['POST'])
    async def link_telegram():
        user_id = current_user_id()
        body = request.get_json(silent=True) or {}
        telegram_chat_id = body.get('telegramChatId')
        if telegram_chat_id is None or str(telegram_chat_id).strip() == '':
            raise ValidationError("Missing telegramChatId")

        moved = await run_blocking(storage.link_telegram_account, user_id, str(telegram_chat_id))
        return jsonify({
            'success': True,
            'message': 'Telegram account linked successfully',
            'movedBriefs': moved
        })

    @app.route('/telegram/link', methods=['GET'])
    async def telegram_link_status():
        user_id = current_user_id()
        user = await run_blocking(storage.get_user, user_id)
        telegram_chat_id = user.telegram_chat_id if user else None
        return jsonify({
            'linked': bool(telegram_chat_id),
            'telegramChatId': telegram_chat_id
        })

    @app.route('/briefs', methods=['POST'])
    async def create_brief():
        body = request.get_json(silent=True) or {}
        telegram_chat_id = body.get('telegramChatId')
        title = body.get('title')
        if not title:
            raise ValidationError("Missing title")

        transcript = body.get('originalTranscript')
        body['category'] = coerce_category(body.get('category'), title, transcript)
        try:
            content = ExegesisContent.model_validate(body)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid brief: {str(e)}")

        if telegram_chat_id is not None:
            user = await run_blocking(
                storage.find_or_create_telegram_user,
                str(telegram_chat_id),
                f"Telegram User {telegram_chat_id}"
            )
            user_id = user.id
        else:
            user_id = current_user_id()

        brief = await run_blocking(
            storage.create_brief,
            user_id=user_id,
            content=content,
            transcript=transcript,
            status=BriefStatus.IN_PROGRESS,
            description=body.get('description'),
            telegram_message_id=_optional_str(body.get('telegramMessageId')),
            telegram_chat_id=_optional_str(telegram_chat_id),
            audio_file_id=body.get('audioFileId'),
            audio_duration=body.get('audioDuration')
        )
        return jsonify({
            'success': True,
            'briefId': brief.id,
            'briefUrl': settings.brief_url(brief.id),
            'message': 'Brief created successfully'
        })

    @app.route('/briefs', methods=['GET'])
    async def list_briefs():
        user_id = request.args.get('userId')
        telegram_chat_id = request.args.get('telegramChatId')
        if not user_id and not telegram_chat_id:
            raise ValidationError("Missing userId or telegramChatId")

        briefs = await run_blocking(
            storage.list_briefs,
            user_id=user_id,
            telegram_chat_id=telegram_chat_id
        )
        return jsonify({'briefs': [brief.to_summary() for brief in briefs]})

    @app.route('/briefs/<brief_id>', methods=['GET'])
    async def get_brief(brief_id):
        brief = await run_blocking(storage.get_brief, brief_id)
        if brief is None:
            raise NotFoundError("Brief not found")

        owner = await run_blocking(storage.get_user, brief.user_id)
        data = brief.to_api()
        data['user'] = owner.model_dump(include={'id', 'name', 'email'}) if owner else None
        return jsonify({'brief': data})

    @app.route('/briefs/<brief_id>', methods=['PATCH'])
    async def update_brief(brief_id):
        await run_blocking(load_owned_brief, brief_id, current_user_id())
        body = request.get_json(silent=True) or {}
        brief = await run_blocking(storage.update_brief, brief_id, body)
        return jsonify({'brief': brief.to_api()})

    @app.route('/briefs/<brief_id>', methods=['DELETE'])
    async def delete_brief(brief_id):
        await run_blocking(load_owned_brief, brief_id, current_user_id())
        await run_blocking(storage.delete_brief, brief_id)
        return jsonify({'success': True})

    @app.route('/exegesis', methods=['POST'])
    async def generate_exegesis():
        body = request.get_json(silent=True) or {}
        passage = body.get('passage')
        if not passage:
            raise ValidationError("Bible passage is required")

        try:
            exegesis = await services.exegesis.generate(passage)
        except GenerationError as e:
            raise AppError(e.message, status_code=502)
        return jsonify(exegesis.model_dump(mode='json', by_alias=True))

    return app


def _optional_str(value) -> Optional[str]:
    return None if value is None else str(value)
