"""
User-facing status notifications and string lookup.

The embedding application normally supplies its own toast display and
localization; the defaults here log through structlog and read from the
English catalogue in constants.
"""
from typing import Dict, Optional, Protocol

from relaychat.constants import DEFAULT_MESSAGES
from relaychat.core.logging import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class Translator(Protocol):
    def t(self, key: str, **kwargs) -> str: ...


class LogNotifier:
    """Notifier that writes every notification to the structured log"""

    def info(self, message: str) -> None:
        logger.info("[Notify] info", message=message)

    def success(self, message: str) -> None:
        logger.info("[Notify] success", message=message)

    def error(self, message: str) -> None:
        logger.error("[Notify] error", message=message)


class CatalogTranslator:
    """Looks keys up in a message catalogue, falling back to the key itself"""

    def __init__(self, messages: Optional[Dict[str, str]] = None):
        self._messages = dict(DEFAULT_MESSAGES)
        if messages:
            self._messages.update(messages)

    def t(self, key: str, **kwargs) -> str:
        template = self._messages.get(key)
        if template is None:
            logger.warning("[Notify] Missing translation", key=key)
            return key
        if not kwargs:
            return template
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError) as e:
            logger.warning("[Notify] Bad translation arguments", key=key, error=str(e))
            return template
