"""Logging setup for the ``blind_dispatch`` package, with startup log rotation."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FILENAME = "blind_dispatch.log"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class RotationPolicy:
    max_bytes: int = 5 * 1024 * 1024
    max_age_hours: int = 24
    max_files: int = 5

    @classmethod
    def from_env(cls) -> "RotationPolicy":
        return cls(
            max_bytes=_env_int("BLIND_DISPATCH_LOG_MAX_BYTES", cls.max_bytes),
            max_age_hours=_env_int("BLIND_DISPATCH_LOG_MAX_AGE_HOURS", cls.max_age_hours),
            max_files=_env_int("BLIND_DISPATCH_LOG_MAX_FILES", cls.max_files),
        )

    def is_due(self, path: Path, now: datetime) -> bool:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return False
        if self.max_bytes > 0 and stat.st_size >= self.max_bytes:
            return True
        if self.max_age_hours > 0:
            modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            return (now - modified).total_seconds() >= self.max_age_hours * 3600
        return False


def rotate_log_if_needed(path: Path, policy: RotationPolicy | None = None) -> Path | None:
    """Move ``path`` aside with a timestamp suffix when it is too big or too old.

    Returns the rotated path, or ``None`` when nothing was rotated. Only the
    newest ``max_files`` rotated logs are kept.
    """
    policy = policy or RotationPolicy.from_env()
    if policy.max_bytes <= 0 and policy.max_age_hours <= 0:
        return None
    if not path.is_file():
        return None

    now = datetime.now(timezone.utc)
    if not policy.is_due(path, now):
        return None

    rotated = path.with_name(f"{path.stem}.{now.strftime('%Y%m%d-%H%M%S')}{path.suffix}")
    shutil.move(str(path), str(rotated))

    if policy.max_files > 0:
        siblings = sorted(
            path.parent.glob(f"{path.stem}.*{path.suffix}"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        for stale in siblings[policy.max_files:]:
            stale.unlink(missing_ok=True)
    return rotated


def configure_logging(logs_dir: Path | None = None) -> None:
    """Attach handlers to the ``blind_dispatch`` logger once per process."""
    level_name = os.environ.get("BLIND_DISPATCH_LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logger = logging.getLogger("blind_dispatch")
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    if logger.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if logs_dir is not None:
        log_path = logs_dir / LOG_FILENAME
        rotate_log_if_needed(log_path)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
