import hashlib
from typing import Optional

import httpx

from kindle_bot.logging_config import get_logger
from kindle_bot.schemas.book import Book
from kindle_bot.services.i18n_service import LANGUAGE_FLAGS, language_name

logger = get_logger("telegram_service")

LANGUAGE_CALLBACK_PREFIX = "lang_"
BOOK_CALLBACK_PREFIX = "book_"
BUTTON_TEXT_LIMIT = 60
CALLBACK_DATA_LIMIT = 64  # bytes, enforced by the Bot API


class TelegramService:
    """Thin client for the Telegram Bot API."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout: float = 30.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout = timeout

    def _make_request(self, method: str, data: Optional[dict] = None, timeout: Optional[float] = None) -> dict:
        """Make request to Telegram API."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=timeout or self.timeout) as client:
                response = client.post(url, json=data or {})
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            return {"ok": False, "error": str(e)}

    def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict:
        """Send message to Telegram chat."""
        data = {
            "chat_id": chat_id,
            "text": text,
        }
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup

        return self._make_request("sendMessage", data)

    def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict:
        """Edit existing message."""
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
        }
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup

        return self._make_request("editMessageText", data)

    def answer_callback_query(self, callback_query_id: str, text: str = "") -> dict:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return self._make_request("answerCallbackQuery", data)

    def get_updates(self, offset: int = 0, timeout: int = 60) -> list[dict]:
        """Long-poll for new updates. Returns an empty list on transport errors."""
        data = {"offset": offset, "timeout": timeout, "allowed_updates": ["message", "callback_query"]}
        result = self._make_request("getUpdates", data, timeout=timeout + 10)
        if not result.get("ok"):
            logger.warning(f"getUpdates failed: {result.get('error') or result.get('description')}")
            return []
        return result.get("result", [])

    def set_webhook(self, url: str, secret_token: Optional[str] = None) -> bool:
        data = {"url": url, "allowed_updates": ["message", "callback_query"]}
        if secret_token:
            data["secret_token"] = secret_token
        result = self._make_request("setWebhook", data)
        if not result.get("ok"):
            logger.error(f"Failed to set webhook: {result}")
            return False
        return True

    def delete_webhook(self) -> bool:
        result = self._make_request("deleteWebhook")
        return bool(result.get("ok"))


def build_language_keyboard(languages: list[str]) -> dict:
    """Inline keyboard with one button per supported language."""
    row = [
        {
            "text": f"{LANGUAGE_FLAGS.get(code, '')} {language_name(code)}".strip(),
            "callback_data": f"{LANGUAGE_CALLBACK_PREFIX}{code}",
        }
        for code in languages
    ]
    return {"inline_keyboard": [row]}


def build_books_keyboard(books: list[Book]) -> dict:
    """One button per candidate; callback_data carries the book reference."""
    rows = []
    for index, book in enumerate(books, start=1):
        label = f"{index}. {book.title}"
        if book.author:
            label += f" ({book.author})"
        if len(label) > BUTTON_TEXT_LIMIT:
            label = label[: BUTTON_TEXT_LIMIT - 1] + "…"
        rows.append([{"text": label, "callback_data": f"{BOOK_CALLBACK_PREFIX}{book_reference(book)}"}])
    return {"inline_keyboard": rows}


def book_reference(book: Book) -> str:
    """Callback-safe reference: the id itself, or a digest when the id would overflow callback_data."""
    if len(f"{BOOK_CALLBACK_PREFIX}{book.id}".encode("utf-8")) <= CALLBACK_DATA_LIMIT:
        return book.id
    return "~" + hashlib.sha256(book.id.encode("utf-8")).hexdigest()[:40]


def find_book_by_reference(books: list[Book], reference: str) -> Optional[Book]:
    for book in books:
        if book_reference(book) == reference:
            return book
    return None
