import threading
from datetime import timedelta
from unittest.mock import Mock

import pytest

from kindle_bot.schemas.user import UserProfile
from kindle_bot.services.result import INVALID_FORMAT, NOT_FOUND, STORAGE_ERROR, Result
from kindle_bot.services.user_service import UserManager, validate_kindle_email
from kindle_bot.services.user_store import MemoryUserStore


class TestValidateKindleEmail:
    @pytest.mark.parametrize(
        "email,expected",
        [
            ("user@kindle.com", True),
            ("a@kindle.com", True),
            ("@kindle.com", False),
            ("", False),
            ("user@gmail.com", False),
            ("user@KINDLE.COM", False),
            ("user@kindle.com ", False),
            ("user@kindle.com.evil", False),
        ],
    )
    def test_suffix_rule(self, email, expected):
        assert validate_kindle_email(email) is expected

    def test_custom_suffix(self):
        assert validate_kindle_email("user@free.kindle.com", "@free.kindle.com") is True
        assert validate_kindle_email("user@kindle.com", "@free.kindle.com") is False


class TestGetOrCreateUser:
    def test_creates_with_detected_language(self, manager, store):
        result = manager.get_or_create_user(1, username="ann", first_name="Ann", lang_code="ru-RU")
        assert result.ok
        user = result.value
        assert user.id == 1
        assert user.language == "ru"
        assert user.kindle_email == ""
        assert user.books_sent == 0
        assert user.is_active is True
        assert store.get_user(1).ok

    def test_unsupported_language_falls_back_to_english(self, manager):
        assert manager.get_or_create_user(1, lang_code="de").value.language == "en"

    def test_existing_user_is_returned_unchanged(self, manager):
        created = manager.get_or_create_user(1, first_name="Ann", lang_code="ru").value
        manager.set_kindle_email(1, "ann@kindle.com")

        again = manager.get_or_create_user(1, first_name="Other", lang_code="en").value
        assert again.first_name == "Ann"
        assert again.language == "ru"
        assert again.kindle_email == "ann@kindle.com"
        assert again.created_at == created.created_at
        assert again.last_active >= created.last_active

    def test_concurrent_first_contact_creates_one_record(self):
        store = MemoryUserStore()
        manager = UserManager(store)
        results = []

        def worker():
            results.append(manager.get_or_create_user(9, first_name="Ann"))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert all(result.ok for result in results)
        assert len({result.value.created_at for result in results}) == 1

    def test_last_active_failure_is_not_surfaced(self):
        store = Mock()
        store.get_user.return_value = Result.success(UserProfile(id=1))
        store.update_last_active.return_value = Result.failure("disk full", STORAGE_ERROR)

        result = UserManager(store).get_or_create_user(1)
        assert result.ok
        assert result.value.id == 1

    def test_storage_error_is_propagated(self):
        store = Mock()
        store.get_user.return_value = Result.failure("db down", STORAGE_ERROR)

        result = UserManager(store).get_or_create_user(1)
        assert result.ok is False
        assert result.error_code == STORAGE_ERROR
        store.create_user.assert_not_called()


class TestPreferences:
    def test_set_kindle_email(self, manager, store):
        manager.get_or_create_user(1)
        assert manager.set_kindle_email(1, "ann@kindle.com").ok
        assert store.get_user(1).value.kindle_email == "ann@kindle.com"

    def test_invalid_email_leaves_profile_untouched(self, manager, store):
        manager.get_or_create_user(1)
        manager.set_kindle_email(1, "ann@kindle.com")
        result = manager.set_kindle_email(1, "ann@gmail.com")
        assert result.error_code == INVALID_FORMAT
        assert store.get_user(1).value.kindle_email == "ann@kindle.com"

    def test_invalid_email_for_unknown_user_is_invalid_format(self, manager):
        assert manager.set_kindle_email(404, "nope").error_code == INVALID_FORMAT

    def test_valid_email_for_unknown_user_is_not_found(self, manager):
        assert manager.set_kindle_email(404, "ann@kindle.com").error_code == NOT_FOUND

    def test_set_language(self, manager, store):
        manager.get_or_create_user(1)
        assert manager.set_language(1, "ru").ok
        assert store.get_user(1).value.language == "ru"

    def test_record_book_sent(self, manager):
        manager.get_or_create_user(1)
        assert manager.record_book_sent(1).value == 1
        assert manager.record_book_sent(1).value == 2

    @pytest.mark.parametrize("language,expected", [("en", True), ("ru", True), ("de", False), ("", False)])
    def test_is_valid_language(self, language, expected):
        assert UserProfile(id=1, language=language).is_valid_language is expected


class TestSearchContext:
    def test_start_and_get(self, manager, books):
        manager.get_or_create_user(1)
        started = manager.start_search(1, "dune", books)
        assert started.ok
        context = manager.get_search_context(1)
        assert context is not None
        assert context.query == "dune"
        assert context.expires_at - context.created_at == manager.search_ttl

    def test_expired_context_is_absent(self, store, books):
        manager = UserManager(store, search_ttl=timedelta(seconds=-1))
        manager.get_or_create_user(1)
        manager.start_search(1, "dune", books)
        assert manager.get_search_context(1) is None

    def test_clear(self, manager, books):
        manager.get_or_create_user(1)
        manager.start_search(1, "dune", books)
        assert manager.clear_search(1).ok
        assert manager.get_search_context(1) is None

    def test_unknown_user(self, manager, books):
        assert manager.start_search(404, "dune", books).error_code == NOT_FOUND
        assert manager.get_search_context(404) is None
