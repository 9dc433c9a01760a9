from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

NotificationLevel = Literal["success", "error", "info"]

_LOG_LEVELS = {"success": logging.INFO, "info": logging.INFO, "error": logging.ERROR}


class Notifier(Protocol):
    """User-visible messages (toasts in a GUI, stderr lines in the CLI)."""

    def notify(self, level: NotificationLevel, message: str, **options: Any) -> None: ...


class LoggingNotifier:
    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger(__name__)

    def notify(self, level: NotificationLevel, message: str, **options: Any) -> None:
        self._logger.log(_LOG_LEVELS.get(level, logging.INFO), message.replace("\n", " "))
