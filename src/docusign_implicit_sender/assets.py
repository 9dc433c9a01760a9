from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Sequence

# Relative to the install location: one level up when packaged, two in a source checkout.
DEFAULT_CANDIDATES = ("..", "../..")


class AssetResolver:
    """Finds bundled files (e.g. the PDF to sign) in the first matching assets directory."""

    def __init__(self, app_path: Path, candidates: Sequence[str] = DEFAULT_CANDIDATES, subdir: str = "assets"):
        self.app_path = app_path
        self.candidates = tuple(candidates)
        self.subdir = subdir

    @property
    def base_path(self) -> Path:
        return self.app_path

    def candidate_paths(self, file_name: str) -> list[Path]:
        return [(self.app_path / c / self.subdir / file_name).resolve() for c in self.candidates]

    def locate(self, file_name: str) -> Optional[Path]:
        for p in self.candidate_paths(file_name):
            if p.is_file() and os.access(p, os.R_OK):
                return p
        return None
