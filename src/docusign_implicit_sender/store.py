from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """Keeps the last credential on disk so CLI commands can share a login.

    The token is short lived and never refreshed; an unreadable or corrupt file
    is treated as "not logged in".
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[Credential]:
        if not self.path.exists():
            return None
        try:
            return Credential.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable credential cache %s: %s", self.path, e)
            return None

    def save(self, credential: Credential) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(credential.model_dump_json(indent=2))
        return self.path

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
