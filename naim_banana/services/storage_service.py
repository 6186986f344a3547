"""Durable key-value storage and image export helpers."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from naim_banana.services.errors import PersistenceError
from naim_banana.utils.clock import Clock, now_ms
from naim_banana.utils.image_utils import ImageState

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9._-]+$")


class KeyValueStorage(Protocol):
    """Byte store consumed by the quota tracker."""

    def read(self, key: str) -> Optional[bytes]:
        ...

    def write(self, key: str, value: bytes) -> None:
        ...


class MemoryStorage:
    """In-process storage, shared by every tracker that holds the instance."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None) -> None:
        self._data: Dict[str, bytes] = dict(initial or {})

    def read(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def write(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)


class FileStorage:
    """One JSON file per key under a root directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"非法的存储键：{key!r}")
        return self.root / f"{key}.json"

    def read(self, key: str) -> Optional[bytes]:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"读取 {path} 失败：{exc}") from exc

    def write(self, key: str, value: bytes) -> None:
        """Replace the stored value atomically."""
        path = self.path_for(key)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fp:
                    fp.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"写入 {path} 失败：{exc}") from exc


class StorageService:
    """Handle saving edited images."""

    def __init__(self, output_dir: Path, clock: Clock = now_ms) -> None:
        self.output_dir = Path(output_dir)
        self._clock = clock

    def save_image(self, state: ImageState) -> Path:
        """Persist an image and return the file path.

        Never overwrites an earlier export: a name already taken in the same
        millisecond gets a numeric suffix.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stem = f"naim-banana-edit-{self._clock()}"
        data = state.to_bytes()
        path = self.output_dir / f"{stem}.{state.extension}"
        suffix = 1
        while True:
            try:
                with path.open("xb") as fp:
                    fp.write(data)
                break
            except FileExistsError:
                path = self.output_dir / f"{stem}-{suffix}.{state.extension}"
                suffix += 1
        logger.info("Saved image to %s", path)
        return path
