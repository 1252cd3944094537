"""
Export directory on the local disk.

Markdown exports are written as plain files below one root directory; the
relative paths produced by the renderer are used unchanged.
"""

import logging
from pathlib import Path
from typing import List, Optional

import aiofiles

from .interface import StorageInterface

logger = logging.getLogger(__name__)


class LocalStorage(StorageInterface):
    """
    Stores export files below base_dir.

    Paths that would resolve outside base_dir are rejected.
    """

    def __init__(self, base_dir: str = "./exports"):
        self.root = Path(base_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, relative: str) -> Path:
        target = (self.root / relative).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Invalid path: {relative} - path traversal detected")
        return target

    async def save(self, path: str, content: bytes | str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        mode, encoding = ("w", "utf-8") if isinstance(content, str) else ("wb", None)
        try:
            async with aiofiles.open(target, mode, encoding=encoding) as fh:
                await fh.write(content)
        except OSError as e:
            logger.error(f"Could not write export file {path}: {e}")
            raise

    async def load(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)
        if not target.is_file():
            return None
        async with aiofiles.open(target, "rb") as fh:
            return await fh.read()

    async def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except ValueError:
            return False

    async def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if not target.is_file():
            return False
        target.unlink()
        logger.debug(f"Removed export file {path}")
        return True

    async def list(self, path: str, pattern: Optional[str] = None) -> List[str]:
        directory = self._resolve(path)
        if not directory.is_dir():
            return []
        return sorted(
            entry.relative_to(self.root).as_posix()
            for entry in directory.rglob(pattern or "*")
            if entry.is_file()
        )
