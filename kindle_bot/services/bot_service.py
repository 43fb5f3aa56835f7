"""Conversation routing for incoming Telegram updates.

The conversation state is never stored; it is derived from the user profile
(Kindle email present? live search context?) on every update.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from kindle_bot.logging_config import UserLoggerAdapter, get_logger
from kindle_bot.schemas.telegram import TelegramCallbackQuery, TelegramMessage, TelegramUpdate, TelegramUser
from kindle_bot.schemas.user import UserProfile, utcnow
from kindle_bot.services.catalog import BookDeliverer, BookSearcher, FeatureUnavailableError
from kindle_bot.services.i18n_service import SUPPORTED_LANGUAGES, Localizer, detect_language, language_name
from kindle_bot.services.result import INVALID_FORMAT, Result
from kindle_bot.services.state_machine import (
    ConversationState,
    capture_email,
    derive_state,
    present_results,
    resolve_selection,
)
from kindle_bot.services.telegram_service import (
    BOOK_CALLBACK_PREFIX,
    LANGUAGE_CALLBACK_PREFIX,
    build_books_keyboard,
    build_language_keyboard,
    find_book_by_reference,
)
from kindle_bot.services.user_service import KINDLE_EMAIL_SUFFIX, UserManager

logger = get_logger("bot_service")

COMMAND_PREFIX = "/"


class MessageKind(str, Enum):
    COMMAND = "command"
    EMAIL = "email"
    QUERY = "query"


@dataclass
class ParsedMessage:
    kind: MessageKind
    text: str
    command: str = ""
    args: str = ""


def classify_message(text: str, email_suffix: str = KINDLE_EMAIL_SUFFIX) -> ParsedMessage:
    """Split raw text into a command, an inline Kindle email, or a search query."""
    text = (text or "").strip()
    if text.startswith(COMMAND_PREFIX):
        parts = text[len(COMMAND_PREFIX) :].split(None, 1)
        head = parts[0] if parts else ""
        rest = parts[1] if len(parts) > 1 else ""
        command = head.split("@", 1)[0]  # /kindle@my_bot
        return ParsedMessage(kind=MessageKind.COMMAND, text=text, command=command, args=rest.strip())
    if email_suffix in text:
        return ParsedMessage(kind=MessageKind.EMAIL, text=text)
    return ParsedMessage(kind=MessageKind.QUERY, text=text)


class Messenger(Protocol):
    """Outbound side of the transport (TelegramService in production)."""

    def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict: ...

    def edit_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> dict: ...

    def answer_callback_query(self, callback_query_id: str, text: str = "") -> dict: ...


class BotHandler:
    def __init__(
        self,
        localizer: Localizer,
        users: UserManager,
        messenger: Messenger,
        searcher: BookSearcher,
        deliverer: BookDeliverer,
        languages: tuple[str, ...] = SUPPORTED_LANGUAGES,
        max_results: int = 10,
    ):
        self.localizer = localizer
        self.users = users
        self.messenger = messenger
        self.searcher = searcher
        self.deliverer = deliverer
        self.languages = languages
        self.max_results = max_results
        self._answered: set[str] = set()
        self._commands = {
            "start": self._handle_start,
            "help": self._handle_help,
            "kindle": self._handle_kindle,
            "language": self._handle_language,
            "whitelist": self._handle_whitelist,
            "settings": self._handle_settings,
            "cancel": self._handle_cancel,
        }

    async def handle_update(self, update: TelegramUpdate) -> None:
        if update.callback_query:
            await self.handle_callback_query(update.callback_query)
            return

        message = update.message
        if message and message.text is not None and message.from_user:
            await self.handle_message(message)
            return

        logger.debug(f"Ignoring update {update.update_id} without actionable content")

    # === MESSAGES ===

    async def handle_message(self, message: TelegramMessage) -> None:
        chat_id = message.chat.id
        sender = message.from_user
        user_result = self._get_or_create(sender)
        if not user_result.ok:
            logger.error(
                "Failed to get/create user",
                extra={"context": {"user_id": sender.id, "error": user_result.error}},
            )
            await self._send(chat_id, detect_language(sender.language_code), "error_occurred")
            return

        user = user_result.value
        log = UserLoggerAdapter(logger, {"user_id": user.id})
        parsed = classify_message(message.text, self.users.email_suffix)
        log.debug(f"Message classified as {parsed.kind.value}", context={"command": parsed.command})

        try:
            if parsed.kind == MessageKind.COMMAND:
                await self._handle_command(chat_id, user, parsed)
            else:
                await self._handle_text(chat_id, user, parsed)
        except Exception as e:
            log.error(f"Message handling failed: {e}", exc_info=True)
            await self._send(chat_id, user.language, "error_occurred")

    async def _handle_command(self, chat_id: int, user: UserProfile, parsed: ParsedMessage) -> None:
        handler = self._commands.get(parsed.command)
        if not handler:
            await self._send(chat_id, user.language, "unknown_command")
            return
        await handler(chat_id, user, parsed.args)

    async def _handle_start(self, chat_id: int, user: UserProfile, args: str) -> None:
        await self._send(chat_id, user.language, "welcome", user.first_name or user.display_name)

        if not user.has_kindle_email:
            await self._send(chat_id, user.language, "whitelist_instructions", parse_mode="Markdown")
            await self._send(chat_id, user.language, "kindle_email_prompt")
        else:
            await self._send(chat_id, user.language, "search_prompt")

    async def _handle_help(self, chat_id: int, user: UserProfile, args: str) -> None:
        await self._send(chat_id, user.language, "help_message")

    async def _handle_kindle(self, chat_id: int, user: UserProfile, args: str) -> None:
        if not args:
            if user.has_kindle_email:
                await self._send(chat_id, user.language, "kindle_email_current", user.kindle_email)
            else:
                await self._send(chat_id, user.language, "kindle_email_prompt")
            return

        await self._save_kindle_email(chat_id, user, args.strip())

    async def _handle_language(self, chat_id: int, user: UserProfile, args: str) -> None:
        await self._send(
            chat_id,
            user.language,
            "language_prompt",
            reply_markup=build_language_keyboard(list(self.languages)),
        )

    async def _handle_whitelist(self, chat_id: int, user: UserProfile, args: str) -> None:
        await self._send(chat_id, user.language, "whitelist_instructions", parse_mode="Markdown")

    async def _handle_settings(self, chat_id: int, user: UserProfile, args: str) -> None:
        kindle_email = user.kindle_email or self.localizer.t(user.language, "not_set")
        await self._send(
            chat_id,
            user.language,
            "settings_display",
            kindle_email,
            language_name(user.language),
            user.books_sent,
        )

    async def _handle_cancel(self, chat_id: int, user: UserProfile, args: str) -> None:
        if user.search_context is not None:
            state = derive_state(user)
            result = self.users.clear_search(user.id)
            if not result.ok:
                await self._report_failure(chat_id, user, result)
                return
            if state == ConversationState.AWAITING_SELECTION:
                self._log_transition(user, state, resolve_selection(state))
        await self._send(chat_id, user.language, "operation_cancelled")

    async def _handle_text(self, chat_id: int, user: UserProfile, parsed: ParsedMessage) -> None:
        if not user.has_kindle_email:
            if parsed.kind == MessageKind.EMAIL:
                await self._save_kindle_email(chat_id, user, parsed.text)
                return
            await self._send(chat_id, user.language, "kindle_email_required")
            return

        if not parsed.text:
            await self._send(chat_id, user.language, "search_prompt")
            return

        await self._search(chat_id, user, parsed.text)

    async def _save_kindle_email(self, chat_id: int, user: UserProfile, email: str) -> None:
        state = derive_state(user)
        result = self.users.set_kindle_email(user.id, email)
        if result.error_code == INVALID_FORMAT:
            await self._send(chat_id, user.language, "kindle_email_invalid")
            return
        if not result.ok:
            await self._report_failure(chat_id, user, result)
            return

        if state == ConversationState.AWAITING_EMAIL:
            self._log_transition(user, state, capture_email(state))
        await self._send(chat_id, user.language, "kindle_email_set", email)
        # Amazon's approved-sender list cannot be checked from here, so remind on every change.
        await self._send(chat_id, user.language, "whitelist_reminder")

    async def _search(self, chat_id: int, user: UserProfile, query: str) -> None:
        log = UserLoggerAdapter(logger, {"user_id": user.id})
        await self._send(chat_id, user.language, "searching", query)

        try:
            books = await self.searcher.search(query)
        except FeatureUnavailableError:
            await self._send(chat_id, user.language, "search_not_implemented")
            return
        except Exception as e:
            log.error(f"Search failed: {e}", exc_info=True, context={"query": query})
            await self._send(chat_id, user.language, "search_failed")
            return

        if not books:
            await self._send(chat_id, user.language, "no_results", query)
            return

        books = list(books)[: self.max_results]
        state = derive_state(user)
        stored = self.users.start_search(user.id, query, books)
        if not stored.ok:
            await self._report_failure(chat_id, user, stored)
            return

        self._log_transition(user, state, present_results(state))
        await self._send(
            chat_id,
            user.language,
            "search_results",
            query,
            len(books),
            reply_markup=build_books_keyboard(books),
        )

    # === CALLBACK QUERIES ===

    async def handle_callback_query(self, query: TelegramCallbackQuery) -> None:
        try:
            await self._dispatch_callback(query)
        finally:
            self._answered.discard(query.id)

    async def _dispatch_callback(self, query: TelegramCallbackQuery) -> None:
        user_result = self._get_or_create(query.from_user)
        if not user_result.ok:
            logger.error(
                "Failed to get/create user",
                extra={"context": {"user_id": query.from_user.id, "error": user_result.error}},
            )
            await self._answer(query, "")
            return

        user = user_result.value
        data = query.data or ""
        try:
            if data.startswith(LANGUAGE_CALLBACK_PREFIX):
                lang = data[len(LANGUAGE_CALLBACK_PREFIX) :]
                if lang in self.languages:
                    await self._handle_language_choice(query, user, lang)
                    return

            if data.startswith(BOOK_CALLBACK_PREFIX):
                await self._handle_book_choice(query, user, data[len(BOOK_CALLBACK_PREFIX) :])
                return
        except Exception as e:
            logger.error(
                f"Callback handling failed: {e}",
                exc_info=True,
                extra={"context": {"user_id": user.id, "data": data}},
            )
            if query.id not in self._answered:
                await self._answer(query, "")
            await self._send(self._callback_chat_id(query, user), user.language, "error_occurred")
            return

        # Malformed callback data is a client glitch, not something to show the user.
        logger.debug(f"Unknown callback data: {data!r}")
        await self._answer(query, "")

    async def _handle_language_choice(self, query: TelegramCallbackQuery, user: UserProfile, lang: str) -> None:
        result = self.users.set_language(user.id, lang)
        if not result.ok:
            logger.warning(
                "Failed to set language",
                extra={"context": {"user_id": user.id, "error": result.error}},
            )
            await self._answer(query, "")
            return

        # Confirm in the language just chosen, not the one the menu was shown in.
        text = self.localizer.t(lang, "language_changed")
        await self._answer(query, text)
        if query.message:
            await asyncio.to_thread(
                self.messenger.edit_message, query.message.chat.id, query.message.message_id, text
            )

    async def _handle_book_choice(self, query: TelegramCallbackQuery, user: UserProfile, reference: str) -> None:
        log = UserLoggerAdapter(logger, {"user_id": user.id})
        chat_id = self._callback_chat_id(query, user)
        now = utcnow()
        state = derive_state(user, now)
        context = user.live_search_context(now)
        book = find_book_by_reference(context.results, reference) if context else None
        if book is None:
            await self._answer(query, self.localizer.t(user.language, "search_expired"))
            return

        if not user.has_kindle_email:
            await self._answer(query, self.localizer.t(user.language, "kindle_email_required"))
            return

        await self._answer(query, self.localizer.t(user.language, "sending_book", book.title))

        try:
            delivery = await self.deliverer.deliver(user.kindle_email, book)
        except FeatureUnavailableError:
            await self._send(chat_id, user.language, "feature_coming_soon")
            return
        except Exception as e:
            log.error(f"Delivery failed: {e}", exc_info=True, context={"book_id": book.id})
            await self._send(chat_id, user.language, "delivery_failed")
            return

        if not delivery.ok:
            log.warning("Delivery rejected", context={"book_id": book.id, "reason": delivery.reason})
            await self._send(chat_id, user.language, "delivery_failed")
            return

        recorded = self.users.record_book_sent(user.id)
        if not recorded.ok:
            log.warning("Failed to record delivery", context={"error": recorded.error})

        cleared = self.users.clear_search(user.id)
        if cleared.ok:
            self._log_transition(user, state, resolve_selection(state))
        log.info("Book delivered", context={"book_id": book.id})
        await self._send(chat_id, user.language, "book_sent", book.title, user.kindle_email)

    # === HELPERS ===

    def _get_or_create(self, sender: TelegramUser) -> Result[UserProfile]:
        return self.users.get_or_create_user(
            sender.id,
            username=sender.username or "",
            first_name=sender.first_name or "",
            last_name=sender.last_name or "",
            lang_code=sender.language_code or "",
        )

    async def _send(
        self,
        chat_id: int,
        language: str,
        key: str,
        *args,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> None:
        text = self.localizer.t(language, key, *args)
        # Messenger calls block on the network; keep them off the event loop.
        await asyncio.to_thread(
            self.messenger.send_message, chat_id, text, reply_markup=reply_markup, parse_mode=parse_mode
        )

    async def _answer(self, query: TelegramCallbackQuery, text: str) -> None:
        self._answered.add(query.id)
        await asyncio.to_thread(self.messenger.answer_callback_query, query.id, text)

    @staticmethod
    def _callback_chat_id(query: TelegramCallbackQuery, user: UserProfile) -> int:
        return query.message.chat.id if query.message else user.id

    async def _report_failure(self, chat_id: int, user: UserProfile, result: Result) -> None:
        context = {"user_id": user.id, "error": result.error, "error_code": result.error_code}
        if result.is_not_found:
            # The router always creates the profile first, so this is a storage anomaly.
            logger.warning("User record missing after get_or_create", extra={"context": context})
        else:
            logger.error("User store operation failed", extra={"context": context})
        await self._send(chat_id, user.language, "error_occurred")

    @staticmethod
    def _log_transition(user: UserProfile, old: ConversationState, new: ConversationState) -> None:
        logger.info(
            f"State {old.value} -> {new.value}",
            extra={"context": {"user_id": user.id}},
        )
