from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Category(str, Enum):
    OLD_TESTAMENT = 'old-testament'
    NEW_TESTAMENT = 'new-testament'
    TOPICAL = 'topical'


class BriefStatus(str, Enum):
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'
    DRAFT = 'draft'


OLD_TESTAMENT_BOOKS = [
    'genesis', 'exodus', 'leviticus', 'numbers', 'deuteronomy',
    'joshua', 'judges', 'ruth', 'samuel', 'kings', 'chronicles',
    'ezra', 'nehemiah', 'esther', 'job', 'psalm', 'proverbs',
    'ecclesiastes', 'song of solomon', 'isaiah', 'jeremiah',
    'lamentations', 'ezekiel', 'daniel', 'hosea', 'joel', 'amos',
    'obadiah', 'jonah', 'micah', 'nahum', 'habakkuk', 'zephaniah',
    'haggai', 'zechariah', 'malachi',
]

NEW_TESTAMENT_BOOKS = [
    'matthew', 'mark', 'luke', 'john', 'acts', 'romans',
    'corinthians', 'galatians', 'ephesians', 'philippians',
    'colossians', 'thessalonians', 'timothy', 'titus', 'philemon',
    'hebrews', 'james', 'peter', 'jude', 'revelation',
]

_CATEGORY_ALIASES = {
    'old-testament': Category.OLD_TESTAMENT,
    'oldtestament': Category.OLD_TESTAMENT,
    'ot': Category.OLD_TESTAMENT,
    'new-testament': Category.NEW_TESTAMENT,
    'newtestament': Category.NEW_TESTAMENT,
    'nt': Category.NEW_TESTAMENT,
    'topical': Category.TOPICAL,
}


def detect_category(title: str, transcript: Optional[str] = None) -> Category:
    """Guess the category from book names mentioned in the title and transcript."""
    content = f"{title or ''} {transcript or ''}".lower()

    for book in OLD_TESTAMENT_BOOKS:
        if book in content:
            return Category.OLD_TESTAMENT

    for book in NEW_TESTAMENT_BOOKS:
        if book in content:
            return Category.NEW_TESTAMENT

    return Category.TOPICAL


def coerce_category(value: Any, title: str = '', transcript: Optional[str] = None) -> Category:
    """Map a model- or user-supplied category onto the closed set.

    Spelling variants ("New Testament", "new_testament", "NT") are accepted.
    Anything else falls back to keyword detection, so an unrecognized value is
    never stored.
    """
    if isinstance(value, Category):
        return value
    if isinstance(value, str):
        key = value.strip().lower().replace('_', '-').replace(' ', '-')
        if key in _CATEGORY_ALIASES:
            return _CATEGORY_ALIASES[key]
        if key.replace('-', '') in _CATEGORY_ALIASES:
            return _CATEGORY_ALIASES[key.replace('-', '')]
    return detect_category(title, transcript)


def estimate_read_time(*parts: Any) -> int:
    """Minutes to read, at roughly 200 words per minute."""
    words = 0
    for part in parts:
        if not part:
            continue
        text = part if isinstance(part, str) else str(part)
        words += len(text.split())
    return max(1, -(-words // 200))


class GreekInsight(BaseModel):
    model_config = ConfigDict(extra='ignore')

    term: str = ''
    transliteration: str = ''
    meaning: str = ''
    usage: str = ''


class OutlinePoint(BaseModel):
    model_config = ConfigDict(extra='ignore')

    title: str = ''
    content: str = ''


class ExegesisContent(BaseModel):
    """Structured output of the language model for one transcript."""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    title: str = Field(min_length=1)
    category: Category
    greek_insights: List[GreekInsight] = Field(default_factory=list, alias='greekInsights')
    historical_context: str = Field(default='', alias='historicalContext')
    outline_points: List[OutlinePoint] = Field(default_factory=list, alias='outlinePoints')

    @field_validator('title')
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('title must not be blank')
        return value

    @field_validator('greek_insights', 'outline_points', mode='before')
    @classmethod
    def _none_is_empty_list(cls, value):
        return [] if value is None else value

    @field_validator('historical_context', mode='before')
    @classmethod
    def _none_is_empty_text(cls, value):
        return '' if value is None else value


class User(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @property
    def is_placeholder(self) -> bool:
        return self.email is None


class Brief(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    category: Category
    original_transcript: Optional[str] = None
    greek_insights: List[Dict[str, Any]] = Field(default_factory=list)
    historical_context: Optional[str] = None
    outline_points: List[Dict[str, Any]] = Field(default_factory=list)
    telegram_message_id: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    audio_file_id: Optional[str] = None
    audio_duration: Optional[int] = None
    read_time: Optional[int] = None
    status: BriefStatus = BriefStatus.IN_PROGRESS
    is_bookmarked: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('greek_insights', 'outline_points', mode='before')
    @classmethod
    def _none_is_empty_list(cls, value):
        return [] if value is None else value

    def to_api(self) -> Dict[str, Any]:
        """Camel-cased representation consumed by the web UI."""
        return {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'description': self.description,
            'category': self.category.value,
            'originalTranscript': self.original_transcript,
            'greekInsights': self.greek_insights,
            'historicalContext': self.historical_context,
            'outlinePoints': self.outline_points,
            'telegramMessageId': self.telegram_message_id,
            'telegramChatId': self.telegram_chat_id,
            'audioFileId': self.audio_file_id,
            'audioDuration': self.audio_duration,
            'readTime': self.read_time,
            'status': self.status.value,
            'isBookmarked': self.is_bookmarked,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_summary(self) -> Dict[str, Any]:
        full = self.to_api()
        keys = ('id', 'title', 'description', 'status', 'category', 'readTime',
                'isBookmarked', 'createdAt', 'updatedAt')
        return {key: full[key] for key in keys}
