from datetime import timedelta
from typing import Optional

import pytest

from kindle_bot.config import LOCALES_DIR
from kindle_bot.schemas.book import Book
from kindle_bot.services.bot_service import BotHandler
from kindle_bot.services.catalog import BookDeliverer, BookSearcher, DeliveryResult
from kindle_bot.services.i18n_service import Localizer
from kindle_bot.services.user_service import UserManager
from kindle_bot.services.user_store import MemoryUserStore


class FakeMessenger:
    """Records outbound Telegram calls instead of hitting the API."""

    def __init__(self):
        self.sent = []
        self.edited = []
        self.answered = []

    def send_message(self, chat_id: int, text: str, reply_markup: Optional[dict] = None, parse_mode=None) -> dict:
        self.sent.append({"chat_id": chat_id, "text": text, "reply_markup": reply_markup, "parse_mode": parse_mode})
        return {"ok": True}

    def edit_message(self, chat_id: int, message_id: int, text: str, reply_markup=None, parse_mode=None) -> dict:
        self.edited.append({"chat_id": chat_id, "message_id": message_id, "text": text})
        return {"ok": True}

    def answer_callback_query(self, callback_query_id: str, text: str = "") -> dict:
        self.answered.append({"id": callback_query_id, "text": text})
        return {"ok": True}

    @property
    def texts(self) -> list[str]:
        return [item["text"] for item in self.sent]


class FakeSearcher(BookSearcher):
    def __init__(self, books=None, error: Optional[Exception] = None):
        self.books = books or []
        self.error = error
        self.queries = []

    async def search(self, query: str):
        self.queries.append(query)
        if self.error:
            raise self.error
        return list(self.books)


class FakeDeliverer(BookDeliverer):
    def __init__(self, result: Optional[DeliveryResult] = None, error: Optional[Exception] = None):
        self.result = result or DeliveryResult(ok=True)
        self.error = error
        self.deliveries = []

    async def deliver(self, email: str, book: Book) -> DeliveryResult:
        self.deliveries.append((email, book.id))
        if self.error:
            raise self.error
        return self.result


def make_books(count: int = 2) -> list[Book]:
    return [
        Book(id=f"b{i}", title=f"Book {i}", author=f"Author {i}", format="epub", size=2048 * i)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def books():
    return make_books()


@pytest.fixture
def localizer():
    return Localizer.from_directory(LOCALES_DIR)


@pytest.fixture
def store():
    return MemoryUserStore()


@pytest.fixture
def manager(store):
    return UserManager(store, search_ttl=timedelta(minutes=10))


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def searcher(books):
    return FakeSearcher(books)


@pytest.fixture
def deliverer():
    return FakeDeliverer()


@pytest.fixture
def handler(localizer, manager, messenger, searcher, deliverer):
    return BotHandler(localizer, manager, messenger, searcher, deliverer)
