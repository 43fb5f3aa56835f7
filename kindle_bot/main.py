import os
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from kindle_bot.config import Settings, get_settings
from kindle_bot.database import build_engine, build_session_factory, init_db
from kindle_bot.logging_config import get_logger, setup_logging
from kindle_bot.routers import admin, telegram_webhook
from kindle_bot.services.bot_service import BotHandler, Messenger
from kindle_bot.services.catalog import (
    BookDeliverer,
    BookSearcher,
    UnavailableBookDeliverer,
    UnavailableBookSearcher,
)
from kindle_bot.services.i18n_service import SUPPORTED_LANGUAGES, Localizer
from kindle_bot.services.polling_service import PollingWorker
from kindle_bot.services.telegram_service import TelegramService
from kindle_bot.services.user_service import UserManager
from kindle_bot.services.user_store import MemoryUserStore, SqlUserStore, UserStore

logger = get_logger("main")


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_telegram_io_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("TELEGRAM_IO_ENABLED"), default=True)


def build_user_store(settings: Settings) -> UserStore:
    if settings.db_type == "sql":
        engine = build_engine(settings.database_url)
        init_db(engine)
        return SqlUserStore(build_session_factory(engine))
    return MemoryUserStore()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[UserStore] = None,
    messenger: Optional[Messenger] = None,
    searcher: Optional[BookSearcher] = None,
    deliverer: Optional[BookDeliverer] = None,
) -> FastAPI:
    """Build the application; collaborators default to production wiring at startup."""
    app = FastAPI(
        title="Kindle Bot",
        description="Telegram bot that delivers books to Kindle devices",
        version="0.1.0",
    )
    app.include_router(telegram_webhook.router)
    app.include_router(admin.router)

    @app.on_event("startup")
    async def start_bot() -> None:
        resolved = settings or get_settings()
        setup_logging(resolved.log_level)

        # Missing or broken translation tables abort startup.
        localizer = Localizer.from_directory(resolved.locales_dir, resolved.default_language)
        languages = tuple(lang for lang in SUPPORTED_LANGUAGES if localizer.has_language(lang))

        user_store = store or build_user_store(resolved)
        users = UserManager(
            user_store,
            email_suffix=resolved.kindle_email_suffix,
            search_ttl=timedelta(minutes=resolved.search_context_ttl_minutes),
        )
        telegram = TelegramService(resolved.telegram_bot_token)
        handler = BotHandler(
            localizer,
            users,
            messenger or telegram,
            searcher or UnavailableBookSearcher(),
            deliverer or UnavailableBookDeliverer(),
            languages=languages,
            max_results=resolved.max_search_results,
        )

        app.state.settings = resolved
        app.state.user_store = user_store
        app.state.bot_handler = handler
        app.state.telegram = telegram
        app.state.polling_worker = None

        logger.info(
            "Bot starting",
            extra={"context": {"mode": resolved.bot_mode, "db_type": resolved.db_type, "languages": list(languages)}},
        )

        if resolved.bot_mode == "webhook":
            if _is_telegram_io_enabled():
                telegram.set_webhook(resolved.webhook_url, resolved.webhook_secret or None)
            return

        if _is_telegram_io_enabled():
            worker = PollingWorker(telegram, handler, timeout=resolved.polling_timeout_seconds)
            worker.start()
            app.state.polling_worker = worker

    @app.on_event("shutdown")
    async def stop_bot() -> None:
        worker = getattr(app.state, "polling_worker", None)
        if worker is not None:
            await worker.stop()
            app.state.polling_worker = None

        resolved = getattr(app.state, "settings", None)
        if resolved is not None and resolved.bot_mode == "webhook" and _is_telegram_io_enabled():
            if not app.state.telegram.delete_webhook():
                logger.warning("Failed to delete webhook")
        logger.info("Bot stopped")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("kindle_bot.main:app", host="0.0.0.0", port=get_settings().port)
