from __future__ import annotations

import logging
import webbrowser
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class WindowHandle:
    """Back-reference to a window owned by the browser, not by this app."""

    url: str
    closed: bool = False


class BrowserLauncher(Protocol):
    def open(self, url: str) -> Optional[WindowHandle]: ...

    def close(self, handle: WindowHandle) -> None: ...


class SystemBrowser:
    def open(self, url: str) -> Optional[WindowHandle]:
        if not webbrowser.open(url, new=1):
            logger.warning("No system browser available to open the login page")
            return None
        return WindowHandle(url=url)

    def close(self, handle: WindowHandle) -> None:
        # The system browser owns its windows; only drop our reference.
        handle.closed = True
