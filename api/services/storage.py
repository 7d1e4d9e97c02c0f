import logging
from typing import Any, Dict, List, Optional

from supabase import PostgrestAPIError

from api.models import Brief, BriefStatus, ExegesisContent, User, estimate_read_time
from lib.error_handler import AppError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TELEGRAM_NAME = 'Telegram User'
# Postgres error codes surfaced by PostgREST
INVALID_TEXT_REPRESENTATION = '22P02'
FOREIGN_KEY_VIOLATION = '23503'

EDITABLE_FIELDS = {
    'isBookmarked': 'is_bookmarked',
    'status': 'status',
    'title': 'title',
    'description': 'description',
}


class StorageService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client
        self.users_table = 'users'
        self.briefs_table = 'briefs'
        logger.info("Storage service initialized")

    # Users

    def get_user(self, user_id: str) -> Optional[User]:
        try:
            result = self.supabase.table(self.users_table)\
                .select('*')\
                .eq('id', user_id)\
                .limit(1)\
                .execute()
        except PostgrestAPIError as e:
            # Ids are uuids; anything else cannot match a row
            if e.code == INVALID_TEXT_REPRESENTATION:
                return None
            raise
        return User(**result.data[0]) if result.data else None

    def get_user_by_telegram_id(self, telegram_chat_id: str) -> Optional[User]:
        result = self.supabase.table(self.users_table)\
            .select('*')\
            .eq('telegram_chat_id', telegram_chat_id)\
            .limit(1)\
            .execute()
        return User(**result.data[0]) if result.data else None

    def find_or_create_telegram_user(self, telegram_user_id: str, display_name: Optional[str] = None) -> User:
        """Return the account for a Telegram identity, creating a placeholder if needed.

        The insert is an upsert that ignores conflicts on the unique
        telegram_chat_id column, so two concurrent first voice notes from the
        same sender end up on one account.
        """
        user = self.get_user_by_telegram_id(telegram_user_id)
        if user:
            return user

        logger.info(f"Creating placeholder user for Telegram ID {telegram_user_id}")
        self.supabase.table(self.users_table).upsert(
            {
                'telegram_chat_id': telegram_user_id,
                'name': display_name or DEFAULT_TELEGRAM_NAME,
            },
            on_conflict='telegram_chat_id',
            ignore_duplicates=True,
        ).execute()

        user = self.get_user_by_telegram_id(telegram_user_id)
        if user is None:
            raise AppError(f"Failed to create user for Telegram ID {telegram_user_id}")
        return user

    def link_telegram_account(self, user_id: str, telegram_chat_id: str) -> int:
        """Attach a Telegram identity to an authenticated account.

        Runs the link_telegram_account database function, which moves a
        placeholder's briefs, deletes the placeholder and sets the chat id in a
        single transaction. Returns the number of briefs moved.
        """
        try:
            result = self.supabase.rpc('link_telegram_account', {
                'p_user_id': user_id,
                'p_telegram_chat_id': telegram_chat_id,
            }).execute()
        except PostgrestAPIError as e:
            if e.code in ('P0002', INVALID_TEXT_REPRESENTATION):
                raise NotFoundError("User not found")
            if e.code == '23505':
                raise ConflictError("Telegram account is already linked to another user")
            raise

        moved = result.data if isinstance(result.data, int) else 0
        logger.info(f"Linked Telegram {telegram_chat_id} to user {user_id}, moved {moved} brief(s)")
        return moved

    # Briefs

    def create_brief(
        self,
        user_id: str,
        content: ExegesisContent,
        transcript: Optional[str] = None,
        status: BriefStatus = BriefStatus.COMPLETED,
        description: Optional[str] = None,
        telegram_message_id: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        audio_file_id: Optional[str] = None,
        audio_duration: Optional[int] = None,
    ) -> Brief:
        greek_insights = [insight.model_dump() for insight in content.greek_insights]
        outline_points = [point.model_dump() for point in content.outline_points]
        data = {
            'user_id': user_id,
            'title': content.title,
            'description': description,
            'category': content.category.value,
            'original_transcript': transcript,
            'greek_insights': greek_insights,
            'historical_context': content.historical_context,
            'outline_points': outline_points,
            'telegram_message_id': telegram_message_id,
            'telegram_chat_id': telegram_chat_id,
            'audio_file_id': audio_file_id,
            'audio_duration': audio_duration,
            'read_time': estimate_read_time(
                transcript, content.historical_context, greek_insights, outline_points
            ),
            'status': status.value,
            'is_bookmarked': False,
        }

        logger.info(f"Storing brief '{content.title}' for user {user_id}")
        try:
            result = self.supabase.table(self.briefs_table).insert(data).execute()
        except PostgrestAPIError as e:
            if e.code in (FOREIGN_KEY_VIOLATION, INVALID_TEXT_REPRESENTATION):
                raise NotFoundError("User not found")
            raise
        if not result.data:
            raise AppError("Brief insert returned no data")
        return Brief(**result.data[0])

    def get_brief(self, brief_id: str) -> Optional[Brief]:
        try:
            result = self.supabase.table(self.briefs_table)\
                .select('*')\
                .eq('id', brief_id)\
                .limit(1)\
                .execute()
        except PostgrestAPIError as e:
            if e.code == INVALID_TEXT_REPRESENTATION:
                return None
            raise
        return Brief(**result.data[0]) if result.data else None

    def list_briefs(self, user_id: Optional[str] = None, telegram_chat_id: Optional[str] = None) -> List[Brief]:
        query = self.supabase.table(self.briefs_table).select('*')
        if user_id:
            query = query.eq('user_id', user_id)
        elif telegram_chat_id:
            query = query.eq('telegram_chat_id', telegram_chat_id)
        else:
            raise ValueError("user_id or telegram_chat_id is required")

        result = query.order('updated_at', desc=True).execute()
        return [Brief(**row) for row in result.data or []]

    def update_brief(self, brief_id: str, changes: Dict[str, Any]) -> Brief:
        """Apply web edits; only bookmark, status, title and description are writable."""
        data = {
            column: changes[field]
            for field, column in EDITABLE_FIELDS.items()
            if changes.get(field) is not None
        }
        if 'title' in data:
            title = str(data['title']).strip()
            if not title:
                raise ValidationError("Title must not be blank")
            data['title'] = title
        if 'status' in data:
            try:
                data['status'] = BriefStatus(data['status']).value
            except ValueError:
                raise ValidationError(f"Invalid status: {data['status']}")
        if not data:
            brief = self.get_brief(brief_id)
            if brief is None:
                raise NotFoundError("Brief not found")
            return brief

        result = self.supabase.table(self.briefs_table)\
            .update(data)\
            .eq('id', brief_id)\
            .execute()
        if not result.data:
            raise NotFoundError("Brief not found")
        return Brief(**result.data[0])

    def delete_brief(self, brief_id: str) -> None:
        self.supabase.table(self.briefs_table).delete().eq('id', brief_id).execute()
