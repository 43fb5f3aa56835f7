import json
import threading
from datetime import timedelta

import pytest

from kindle_bot.database import build_engine, build_session_factory, init_db
from kindle_bot.schemas.user import Preferences, SearchContext, UserProfile
from kindle_bot.services.result import NOT_FOUND
from kindle_bot.services.user_store import MemoryUserStore, SqlUserStore


@pytest.fixture(params=["memory", "sql"])
def user_store(request, tmp_path):
    if request.param == "memory":
        return MemoryUserStore()
    engine = build_engine(f"sqlite:///{tmp_path / 'users.db'}")
    init_db(engine)
    return SqlUserStore(build_session_factory(engine))


def _profile(user_id=100, **kwargs):
    return UserProfile(id=user_id, first_name="Ann", language="en", **kwargs)


class TestGetAndCreate:
    def test_missing_user_is_not_found(self, user_store):
        result = user_store.get_user(1)
        assert result.ok is False
        assert result.error_code == NOT_FOUND

    def test_create_then_get(self, user_store):
        created = user_store.create_user(_profile())
        assert created.ok
        fetched = user_store.get_user(100)
        assert fetched.ok
        assert fetched.value.first_name == "Ann"
        assert fetched.value.telegram_id == 100
        assert fetched.value.books_sent == 0

    def test_create_is_insert_if_absent(self, user_store):
        first = user_store.create_user(_profile())
        second = user_store.create_user(UserProfile(id=100, first_name="Bob"))
        assert second.ok
        assert second.value.first_name == "Ann"
        assert second.value.created_at == first.value.created_at

    def test_save_replaces_and_refreshes_updated_at(self, user_store):
        created = user_store.create_user(_profile()).value
        created.kindle_email = "ann@kindle.com"
        saved = user_store.save_user(created)
        assert saved.ok
        assert saved.value.updated_at >= created.updated_at
        assert user_store.get_user(100).value.kindle_email == "ann@kindle.com"


class TestIsolation:
    def test_returned_profile_is_a_copy(self, user_store):
        user_store.create_user(_profile())
        fetched = user_store.get_user(100).value
        fetched.kindle_email = "mutated@kindle.com"
        fetched.books_sent = 99
        again = user_store.get_user(100).value
        assert again.kindle_email == ""
        assert again.books_sent == 0


class TestUpdatePreferences:
    def test_partial_update_keeps_other_fields(self, user_store):
        user_store.create_user(_profile(kindle_email="ann@kindle.com"))
        assert user_store.update_preferences(100, Preferences(language="ru")).ok
        user = user_store.get_user(100).value
        assert user.language == "ru"
        assert user.kindle_email == "ann@kindle.com"

    def test_empty_preferences_change_nothing(self, user_store):
        user_store.create_user(_profile(kindle_email="ann@kindle.com"))
        assert user_store.update_preferences(100, Preferences()).ok
        user = user_store.get_user(100).value
        assert user.language == "en"
        assert user.kindle_email == "ann@kindle.com"

    def test_unknown_user(self, user_store):
        assert user_store.update_preferences(5, Preferences(language="ru")).error_code == NOT_FOUND


class TestCounters:
    def test_increment_returns_new_count(self, user_store):
        user_store.create_user(_profile())
        assert user_store.increment_books_sent(100).value == 1
        assert user_store.increment_books_sent(100).value == 2
        assert user_store.get_user(100).value.books_sent == 2

    def test_increment_unknown_user(self, user_store):
        assert user_store.increment_books_sent(5).error_code == NOT_FOUND

    def test_update_last_active(self, user_store):
        created = user_store.create_user(_profile()).value
        assert user_store.update_last_active(100).ok
        assert user_store.get_user(100).value.last_active >= created.last_active
        assert user_store.update_last_active(5).error_code == NOT_FOUND


class TestSearchContext:
    def test_set_and_clear(self, user_store, books):
        user_store.create_user(_profile())
        context = SearchContext.create("dune", books, timedelta(minutes=10))
        assert user_store.set_search_context(100, context).ok

        stored = user_store.get_user(100).value.search_context
        assert stored.query == "dune"
        assert [book.id for book in stored.results] == ["b1", "b2"]
        assert stored.expires_at == context.expires_at

        assert user_store.set_search_context(100, None).ok
        assert user_store.get_user(100).value.search_context is None

    def test_unknown_user(self, user_store):
        assert user_store.set_search_context(5, None).error_code == NOT_FOUND


class TestExport:
    def test_export_contains_every_user(self, user_store):
        user_store.create_user(_profile(100))
        user_store.create_user(_profile(200, kindle_email="x@kindle.com"))
        data = json.loads(user_store.export_data())
        assert set(data) == {"100", "200"}
        assert data["200"]["kindle_email"] == "x@kindle.com"

    def test_export_empty(self, user_store):
        assert json.loads(user_store.export_data()) == {}


class TestConcurrency:
    def test_concurrent_increments_are_not_lost(self, user_store):
        user_store.create_user(_profile())

        def worker():
            for _ in range(50):
                user_store.increment_books_sent(100)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert user_store.get_user(100).value.books_sent == 400

    def test_concurrent_creates_converge(self, user_store):
        results = []

        def worker(name):
            results.append(user_store.create_user(UserProfile(id=7, first_name=name)))

        threads = [threading.Thread(target=worker, args=(f"user{i}",)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        names = {result.value.first_name for result in results}
        assert len(names) == 1
        assert user_store.get_user(7).value.first_name in names
