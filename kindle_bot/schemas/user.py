from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from kindle_bot.schemas.book import Book


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchContext(BaseModel):
    """Candidate list of an in-progress search, waiting for the user to pick one."""

    query: str
    results: list[Book] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    @classmethod
    def create(cls, query: str, results: list[Book], ttl: timedelta, now: Optional[datetime] = None) -> "SearchContext":
        now = now or utcnow()
        return cls(query=query, results=list(results), created_at=now, expires_at=now + ttl)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Live iff it still has candidates and has not expired."""
        if not self.results:
            return False
        return (now or utcnow()) < self.expires_at

    def find_book(self, book_id: str) -> Optional[Book]:
        for book in self.results:
            if book.id == book_id:
                return book
        return None


class Preferences(BaseModel):
    """Partial update payload: empty fields are left untouched by the store."""

    kindle_email: str = ""
    language: str = ""
    preferred_format: str = ""


class UserProfile(BaseModel):
    id: int
    telegram_id: int = 0
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    kindle_email: str = ""
    language: str = "en"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_active: datetime = Field(default_factory=utcnow)
    books_sent: int = 0
    is_active: bool = True
    is_banned: bool = False
    search_context: Optional[SearchContext] = None

    @model_validator(mode="after")
    def mirror_telegram_id(self) -> "UserProfile":
        if not self.telegram_id:
            self.telegram_id = self.id
        return self

    @property
    def has_kindle_email(self) -> bool:
        return self.kindle_email != ""

    @property
    def is_valid_language(self) -> bool:
        from kindle_bot.services.i18n_service import SUPPORTED_LANGUAGES

        return self.language in SUPPORTED_LANGUAGES

    @property
    def display_name(self) -> str:
        if self.first_name:
            if self.last_name:
                return f"{self.first_name} {self.last_name}"
            return self.first_name
        if self.username:
            return self.username
        return "User"

    def has_live_search_context(self, now: Optional[datetime] = None) -> bool:
        return self.search_context is not None and self.search_context.is_active(now)

    def live_search_context(self, now: Optional[datetime] = None) -> Optional[SearchContext]:
        if self.has_live_search_context(now):
            return self.search_context
        return None
