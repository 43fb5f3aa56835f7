from datetime import datetime, timedelta, timezone
from typing import Optional

from kindle_bot.logging_config import get_logger
from kindle_bot.schemas.book import Book
from kindle_bot.schemas.user import Preferences, SearchContext, UserProfile
from kindle_bot.services.i18n_service import detect_language
from kindle_bot.services.result import INVALID_FORMAT, Result
from kindle_bot.services.user_store import UserStore

logger = get_logger("user_service")

KINDLE_EMAIL_SUFFIX = "@kindle.com"
DEFAULT_SEARCH_TTL = timedelta(minutes=10)


def validate_kindle_email(email: str, suffix: str = KINDLE_EMAIL_SUFFIX) -> bool:
    """Exact, case-sensitive suffix match with a non-empty local part."""
    if not email:
        return False
    if len(email) <= len(suffix):
        return False
    return email.endswith(suffix)


def has_kindle_email(profile: UserProfile) -> bool:
    return profile.has_kindle_email


def has_live_search_context(profile: UserProfile, now: Optional[datetime] = None) -> bool:
    return profile.has_live_search_context(now)


class UserManager:
    """Business rules for user preferences on top of a :class:`UserStore`."""

    def __init__(
        self,
        store: UserStore,
        email_suffix: str = KINDLE_EMAIL_SUFFIX,
        search_ttl: timedelta = DEFAULT_SEARCH_TTL,
    ):
        self.store = store
        self.email_suffix = email_suffix
        self.search_ttl = search_ttl

    def get_or_create_user(
        self,
        telegram_id: int,
        username: str = "",
        first_name: str = "",
        last_name: str = "",
        lang_code: str = "",
    ) -> Result[UserProfile]:
        existing = self.store.get_user(telegram_id)
        if existing.ok:
            user = existing.value
            user.last_active = datetime.now(timezone.utc)
            touched = self.store.update_last_active(telegram_id)
            if not touched.ok:
                logger.warning(
                    "Failed to refresh last_active",
                    extra={"context": {"user_id": telegram_id, "error": touched.error}},
                )
            return Result.success(user)

        if not existing.is_not_found:
            return existing

        now = datetime.now(timezone.utc)
        user = UserProfile(
            id=telegram_id,
            telegram_id=telegram_id,
            username=username or "",
            first_name=first_name or "",
            last_name=last_name or "",
            language=detect_language(lang_code),
            created_at=now,
            updated_at=now,
            last_active=now,
            is_active=True,
            books_sent=0,
        )
        created = self.store.create_user(user)
        if created.ok and created.value.created_at == now:
            logger.info(
                "Created user",
                extra={"context": {"user_id": telegram_id, "language": user.language}},
            )
        return created

    def validate_kindle_email(self, email: str) -> bool:
        return validate_kindle_email(email, self.email_suffix)

    def set_kindle_email(self, telegram_id: int, email: str) -> Result[None]:
        if not self.validate_kindle_email(email):
            return Result.failure("invalid Kindle email format", INVALID_FORMAT)
        return self.store.update_preferences(telegram_id, Preferences(kindle_email=email))

    def set_language(self, telegram_id: int, language: str) -> Result[None]:
        # Stored as given; callers only offer languages from the supported set.
        return self.store.update_preferences(telegram_id, Preferences(language=language))

    def record_book_sent(self, telegram_id: int) -> Result[int]:
        return self.store.increment_books_sent(telegram_id)

    def start_search(self, telegram_id: int, query: str, books: list[Book]) -> Result[SearchContext]:
        context = SearchContext.create(query, books, self.search_ttl)
        stored = self.store.set_search_context(telegram_id, context)
        if not stored.ok:
            return stored
        return Result.success(context)

    def get_search_context(self, telegram_id: int) -> Optional[SearchContext]:
        """Return the live search context, or None when missing or expired."""
        user = self.store.get_user(telegram_id)
        if not user.ok:
            return None
        return user.value.live_search_context()

    def clear_search(self, telegram_id: int) -> Result[None]:
        return self.store.set_search_context(telegram_id, None)
