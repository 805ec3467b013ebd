"""
Localization for API response messages

Loads locales/<lang>.json once, picks a language from the Accept-Language
header and falls back to English for anything missing.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class LanguageConfig:
    """
    Translation store with English fallback

    Keys are dotted paths into the locale files, e.g. 'errors.already_registered'.
    """

    _instance = None
    _initialized = False

    SUPPORTED_LANGUAGES = {
        'en': 'English',
        'ko': '한국어',
    }

    DEFAULT_LANGUAGE = 'en'

    def __new__(cls):
        """Singleton so locale files are read once per process"""
        if cls._instance is None:
            cls._instance = super(LanguageConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if LanguageConfig._initialized:
            return

        self.translations: Dict[str, Dict[str, Any]] = {}
        self.locales_path = Path(__file__).parent / 'locales'
        self._load_translations()

        LanguageConfig._initialized = True
        logger.info(f"🌍 Language system initialized - Supported: {list(self.SUPPORTED_LANGUAGES.keys())}")

    def _load_translations(self) -> None:
        for lang_code in self.SUPPORTED_LANGUAGES:
            translation_file = self.locales_path / f"{lang_code}.json"
            try:
                with open(translation_file, 'r', encoding='utf-8') as f:
                    self.translations[lang_code] = json.load(f)
                logger.debug(f"✅ Loaded translations for {lang_code}")
            except FileNotFoundError:
                logger.warning(f"⚠️ Translation file not found: {translation_file}")
                self.translations[lang_code] = {}
            except json.JSONDecodeError as e:
                logger.error(f"❌ Failed to parse translations for {lang_code}: {e}")
                self.translations[lang_code] = {}

    def detect_language(self, accept_language: Optional[str]) -> str:
        """
        Pick the first supported language from an Accept-Language header

        Args:
            accept_language: Raw header value, e.g. 'ko-KR,ko;q=0.9,en;q=0.8'

        Returns:
            Supported language code, English when nothing matches
        """
        if not accept_language:
            return self.DEFAULT_LANGUAGE

        weighted = []
        for position, part in enumerate(accept_language.split(',')):
            tag, _, params = part.strip().partition(';')
            quality = 1.0
            if params.strip().startswith('q='):
                try:
                    quality = float(params.strip()[2:])
                except ValueError:
                    quality = 0.0
            base_lang = tag.strip().lower().split('-')[0]
            if base_lang:
                weighted.append((-quality, position, base_lang))

        for _, _, base_lang in sorted(weighted):
            if base_lang in self.SUPPORTED_LANGUAGES:
                return base_lang
        return self.DEFAULT_LANGUAGE

    def _get_nested_translation(self, key: str, lang_code: str) -> Optional[str]:
        node: Any = self.translations.get(lang_code, {})
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node if isinstance(node, str) else None

    def get_translation(self, key: str, lang_code: str, **kwargs) -> str:
        text = self._get_nested_translation(key, lang_code)
        if text is None and lang_code != self.DEFAULT_LANGUAGE:
            text = self._get_nested_translation(key, self.DEFAULT_LANGUAGE)
        if text is None:
            logger.warning(f"⚠️ Missing translation key: {key}")
            return key

        if kwargs:
            try:
                return text.format(**kwargs)
            except (KeyError, IndexError) as e:
                logger.error(f"❌ Translation format error for {key}: {e}")
        return text


def get_language_config() -> LanguageConfig:
    return LanguageConfig()


def detect_language(accept_language: Optional[str]) -> str:
    return get_language_config().detect_language(accept_language)


def t(key: str, lang_code: str = 'en', **kwargs) -> str:
    """Translate a key, e.g. t('errors.already_registered', 'ko', domain='foo.example.com')"""
    return get_language_config().get_translation(key, lang_code, **kwargs)
