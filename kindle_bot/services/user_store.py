"""User profile storage.

Every read hands out an independent copy and every write goes through a named
operation, so a single operation is atomic with respect to any other operation
on the same user id.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from kindle_bot.logging_config import get_logger
from kindle_bot.models import UserRecord
from kindle_bot.schemas.user import Preferences, SearchContext, UserProfile
from kindle_bot.services.result import STORAGE_ERROR, Result

logger = get_logger("user_store")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UserStore(ABC):
    """Storage contract shared by every backend."""

    @abstractmethod
    def get_user(self, user_id: int) -> Result[UserProfile]:
        pass

    @abstractmethod
    def save_user(self, profile: UserProfile) -> Result[UserProfile]:
        """Replace the stored profile with the same id. Refreshes ``updated_at``."""
        pass

    @abstractmethod
    def create_user(self, profile: UserProfile) -> Result[UserProfile]:
        """Insert if absent; returns whichever record ends up stored."""
        pass

    @abstractmethod
    def update_preferences(self, user_id: int, prefs: Preferences) -> Result[None]:
        """Merge only the non-empty fields of ``prefs``."""
        pass

    @abstractmethod
    def increment_books_sent(self, user_id: int) -> Result[int]:
        pass

    @abstractmethod
    def update_last_active(self, user_id: int) -> Result[None]:
        pass

    @abstractmethod
    def set_search_context(self, user_id: int, context: Optional[SearchContext]) -> Result[None]:
        pass

    @abstractmethod
    def export_data(self) -> str:
        pass


class MemoryUserStore(UserStore):
    """In-process store guarded by a single lock."""

    def __init__(self):
        self._users: dict[int, UserProfile] = {}
        self._lock = threading.Lock()

    def get_user(self, user_id: int) -> Result[UserProfile]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return Result.not_found(user_id)
            return Result.success(user.model_copy(deep=True))

    def save_user(self, profile: UserProfile) -> Result[UserProfile]:
        stored = profile.model_copy(deep=True)
        with self._lock:
            stored.updated_at = _now()
            self._users[stored.id] = stored
            return Result.success(stored.model_copy(deep=True))

    def create_user(self, profile: UserProfile) -> Result[UserProfile]:
        with self._lock:
            existing = self._users.get(profile.id)
            if existing is not None:
                return Result.success(existing.model_copy(deep=True))
            stored = profile.model_copy(deep=True)
            self._users[stored.id] = stored
            return Result.success(stored.model_copy(deep=True))

    def update_preferences(self, user_id: int, prefs: Preferences) -> Result[None]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return Result.not_found(user_id)
            if prefs.kindle_email:
                user.kindle_email = prefs.kindle_email
            if prefs.language:
                user.language = prefs.language
            user.updated_at = _now()
            return Result.success()

    def increment_books_sent(self, user_id: int) -> Result[int]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return Result.not_found(user_id)
            user.books_sent += 1
            user.updated_at = _now()
            return Result.success(user.books_sent)

    def update_last_active(self, user_id: int) -> Result[None]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return Result.not_found(user_id)
            user.last_active = _now()
            return Result.success()

    def set_search_context(self, user_id: int, context: Optional[SearchContext]) -> Result[None]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return Result.not_found(user_id)
            user.search_context = context.model_copy(deep=True) if context else None
            return Result.success()

    def export_data(self) -> str:
        with self._lock:
            payload = {str(user_id): user.model_dump(mode="json") for user_id, user in self._users.items()}
        return json.dumps(payload, indent=2, ensure_ascii=False)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record_to_profile(record: UserRecord) -> UserProfile:
    return UserProfile(
        id=record.id,
        username=record.username or "",
        first_name=record.first_name or "",
        last_name=record.last_name or "",
        kindle_email=record.kindle_email or "",
        language=record.language,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
        last_active=_aware(record.last_active),
        books_sent=record.books_sent or 0,
        is_active=record.is_active,
        is_banned=record.is_banned,
        search_context=SearchContext.model_validate(record.search_context) if record.search_context else None,
    )


def profile_to_values(profile: UserProfile) -> dict:
    return {
        "id": profile.id,
        "username": profile.username,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "kindle_email": profile.kindle_email,
        "language": profile.language,
        "created_at": profile.created_at,
        "updated_at": profile.updated_at,
        "last_active": profile.last_active,
        "books_sent": profile.books_sent,
        "is_active": profile.is_active,
        "is_banned": profile.is_banned,
        "search_context": profile.search_context.model_dump(mode="json") if profile.search_context else None,
    }


class SqlUserStore(UserStore):
    """SQLAlchemy-backed store; each operation is one short transaction."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _update(self, user_id: int, action: str, **values) -> Result[None]:
        try:
            with self._session_factory.begin() as session:
                result = session.execute(update(UserRecord).where(UserRecord.id == user_id).values(**values))
                if result.rowcount == 0:
                    return Result.not_found(user_id)
            return Result.success()
        except SQLAlchemyError as e:
            logger.error(f"{action} failed: {e}", extra={"context": {"user_id": user_id}})
            return Result.failure(str(e), STORAGE_ERROR)

    def get_user(self, user_id: int) -> Result[UserProfile]:
        try:
            with self._session_factory() as session:
                record = session.get(UserRecord, user_id)
                if record is None:
                    return Result.not_found(user_id)
                return Result.success(record_to_profile(record))
        except SQLAlchemyError as e:
            logger.error(f"get_user failed: {e}", extra={"context": {"user_id": user_id}})
            return Result.failure(str(e), STORAGE_ERROR)

    def save_user(self, profile: UserProfile) -> Result[UserProfile]:
        stored = profile.model_copy(deep=True)
        stored.updated_at = _now()
        try:
            with self._session_factory.begin() as session:
                session.merge(UserRecord(**profile_to_values(stored)))
            return Result.success(stored)
        except SQLAlchemyError as e:
            logger.error(f"save_user failed: {e}", extra={"context": {"user_id": profile.id}})
            return Result.failure(str(e), STORAGE_ERROR)

    def create_user(self, profile: UserProfile) -> Result[UserProfile]:
        try:
            with self._session_factory.begin() as session:
                session.add(UserRecord(**profile_to_values(profile)))
            return Result.success(profile.model_copy(deep=True))
        except IntegrityError:
            # Another caller inserted the same id first; converge on its record.
            return self.get_user(profile.id)
        except SQLAlchemyError as e:
            logger.error(f"create_user failed: {e}", extra={"context": {"user_id": profile.id}})
            return Result.failure(str(e), STORAGE_ERROR)

    def update_preferences(self, user_id: int, prefs: Preferences) -> Result[None]:
        values = {"updated_at": _now()}
        if prefs.kindle_email:
            values["kindle_email"] = prefs.kindle_email
        if prefs.language:
            values["language"] = prefs.language
        return self._update(user_id, "update_preferences", **values)

    def increment_books_sent(self, user_id: int) -> Result[int]:
        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    update(UserRecord)
                    .where(UserRecord.id == user_id)
                    .values(books_sent=UserRecord.books_sent + 1, updated_at=_now())
                )
                if result.rowcount == 0:
                    return Result.not_found(user_id)
                count = session.execute(select(UserRecord.books_sent).where(UserRecord.id == user_id)).scalar_one()
            return Result.success(count)
        except SQLAlchemyError as e:
            logger.error(f"increment_books_sent failed: {e}", extra={"context": {"user_id": user_id}})
            return Result.failure(str(e), STORAGE_ERROR)

    def update_last_active(self, user_id: int) -> Result[None]:
        return self._update(user_id, "update_last_active", last_active=_now())

    def set_search_context(self, user_id: int, context: Optional[SearchContext]) -> Result[None]:
        payload = context.model_dump(mode="json") if context else None
        return self._update(user_id, "set_search_context", search_context=payload)

    def export_data(self) -> str:
        with self._session_factory() as session:
            records = session.execute(select(UserRecord)).scalars().all()
            payload = {str(record.id): record_to_profile(record).model_dump(mode="json") for record in records}
        return json.dumps(payload, indent=2, ensure_ascii=False)
