"""Filesystem locations for the sqlite store, stored images and log files."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

RUNTIME_DIR_ENV = "BLIND_DISPATCH_RUNTIME_DIR"
DB_FILENAME = "blind_dispatch.sqlite3"


@dataclass(frozen=True)
class RuntimePaths:
    """Everything hangs off ``root``; directories are created by ``ensure``."""

    root: Path

    @property
    def db_path(self) -> Path:
        return self.root / "db" / DB_FILENAME

    @property
    def assets_dir(self) -> Path:
        return self.root / "assets"

    @property
    def images_dir(self) -> Path:
        return self.assets_dir / "images"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    def ensure(self) -> RuntimePaths:
        for directory in (self.db_path.parent, self.images_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self


def default_runtime_root() -> Path:
    """``runtime-data`` beside the package checkout."""
    return Path(__file__).resolve().parents[2] / "runtime-data"


def get_runtime_paths(root: Union[Path, str, None] = None) -> RuntimePaths:
    if root is None:
        configured = os.environ.get(RUNTIME_DIR_ENV, "").strip()
        root = Path(configured) if configured else default_runtime_root()
    return RuntimePaths(root=Path(root)).ensure()
