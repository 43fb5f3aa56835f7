from kindle_bot.schemas.book import Book
from kindle_bot.schemas.telegram import TelegramCallbackQuery, TelegramMessage, TelegramUpdate, TelegramUser
from kindle_bot.schemas.user import Preferences, SearchContext, UserProfile

__all__ = [
    "Book",
    "Preferences",
    "SearchContext",
    "UserProfile",
    "TelegramCallbackQuery",
    "TelegramMessage",
    "TelegramUpdate",
    "TelegramUser",
]
