"""Main and extra screenshot queues read by the pipelines."""

from __future__ import annotations

import base64
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional

from .llm.types import IMAGE_MEDIA_TYPE, ImagePayload

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".webp": "image/webp"}


def scan_directory(directory: Optional[str]) -> List[str]:
    """Image files in directory, oldest first."""
    if not directory:
        return []
    root = Path(directory)
    if not root.is_dir():
        return []
    files = [p for p in root.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES]
    files.sort(key=lambda p: (p.stat().st_mtime, p.name))
    return [str(p) for p in files]


class ScreenshotQueues:
    def __init__(self, main: Iterable[str] = (), extra: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._main = list(main)
        self._extra = list(extra)

    @classmethod
    def from_directories(cls, main_dir: Optional[str], extra_dir: Optional[str] = None) -> "ScreenshotQueues":
        main = scan_directory(main_dir)
        extra = scan_directory(extra_dir)
        extra_set = set(extra)
        return cls([p for p in main if p not in extra_set], extra)

    @property
    def main(self) -> List[str]:
        with self._lock:
            return list(self._main)

    @property
    def extra(self) -> List[str]:
        with self._lock:
            return list(self._extra)

    def add(self, path: str, extra: bool = False) -> None:
        with self._lock:
            (self._extra if extra else self._main).append(path)

    def clear_extra(self) -> None:
        with self._lock:
            dropped = len(self._extra)
            self._extra.clear()
        logger.info("Cleared %d extra screenshot(s)", dropped)

    @staticmethod
    def existing(paths: Iterable[str]) -> List[str]:
        return [path for path in paths if Path(path).is_file()]

    @staticmethod
    def load(paths: Iterable[str]) -> List[ImagePayload]:
        payloads: List[ImagePayload] = []
        for path in paths:
            try:
                data = Path(path).read_bytes()
            except OSError as exc:
                logger.error("Error reading screenshot %s: %s", path, exc)
                continue
            media_type = IMAGE_SUFFIXES.get(Path(path).suffix.lower(), IMAGE_MEDIA_TYPE)
            payloads.append(ImagePayload(path=path, data=base64.b64encode(data).decode("ascii"), media_type=media_type))
        return payloads
