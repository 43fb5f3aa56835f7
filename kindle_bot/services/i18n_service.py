"""Localized message tables loaded from ``<locales_dir>/<lang>.json``."""

import json
from pathlib import Path
from typing import Optional

from kindle_bot.logging_config import get_logger

logger = get_logger("i18n_service")

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES = ("en", "ru")
LANGUAGE_NAMES = {
    "en": "English",
    "ru": "Русский",
}
LANGUAGE_FLAGS = {
    "en": "🇬🇧",
    "ru": "🇷🇺",
}


class LocalizationError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def detect_language(
    language_code: Optional[str],
    supported: tuple[str, ...] = SUPPORTED_LANGUAGES,
    default: str = DEFAULT_LANGUAGE,
) -> str:
    """Map a Telegram locale tag such as ``en-US`` to a supported language."""
    lang = (language_code or "").lower()
    if "-" in lang:
        lang = lang.split("-", 1)[0]
    if lang in supported:
        return lang
    return default


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


class Localizer:
    """Immutable lookup over the loaded translation tables."""

    def __init__(self, default_language: str = DEFAULT_LANGUAGE):
        self.default_language = default_language
        self._translations: dict[str, dict[str, str]] = {}

    @classmethod
    def from_directory(cls, directory: Path, default_language: str = DEFAULT_LANGUAGE) -> "Localizer":
        localizer = cls(default_language)
        localizer.load_translations(directory)
        return localizer

    def load_translations(self, directory: Path) -> None:
        """Load every ``*.json`` table; any broken file aborts the whole load."""
        directory = Path(directory)
        if not directory.is_dir():
            raise LocalizationError(f"directory does not exist: {directory}")

        loaded: dict[str, dict[str, str]] = {}
        for path in sorted(directory.glob("*.json")):
            lang = path.stem
            try:
                loaded[lang] = self._read_table(path)
            except LocalizationError as exc:
                raise LocalizationError(f"failed to load language {lang}: {exc.message}") from exc

        self._translations = loaded
        logger.info(
            "Loaded translations",
            extra={"context": {"languages": sorted(loaded), "directory": str(directory)}},
        )

    def load_language(self, lang: str, path: Path) -> None:
        table = self._read_table(Path(path))
        self._translations = {**self._translations, lang: table}

    @staticmethod
    def _read_table(path: Path) -> dict[str, str]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except OSError as exc:
            raise LocalizationError(f"failed to read file: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise LocalizationError(f"failed to parse JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise LocalizationError(f"{path.name}: top level must be an object")
        for key, value in payload.items():
            if not isinstance(value, str):
                raise LocalizationError(f"{path.name}: value for '{key}' must be a string")
        return payload

    def t(self, lang: str, key: str, *args) -> str:
        """Resolve ``key`` in ``lang``, then the default language, then the key itself.

        Positional ``args`` are interpolated printf-style; a template that does not
        match its call site raises ``TypeError``.
        """
        template = self._translations.get(lang, {}).get(key)
        if template is None:
            template = self._translations.get(self.default_language, {}).get(key)
        if template is None:
            return key
        if args:
            return template % args
        return template

    def supported_languages(self) -> list[str]:
        return list(self._translations)

    def has_language(self, lang: str) -> bool:
        return lang in self._translations
