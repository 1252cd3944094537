"""
Storage Interface - Abstract base class for export storage backends.
Markdown exports are written through this interface so the target
(local directory today, object storage later) can be swapped.
"""

from abc import ABC, abstractmethod
from typing import List, Optional


class StorageInterface(ABC):
    """Contract every export storage backend implements."""

    @abstractmethod
    async def save(self, path: str, content: bytes | str) -> None:
        """
        Save content to the specified path, creating parent directories.

        Args:
            path: Relative path (e.g., "Helper/2024-01-01_Chat/Hello.md")
            content: Text or binary content
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> Optional[bytes]:
        """
        Load content from the specified path.

        Returns:
            File content as bytes, or None if the file doesn't exist
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether a file exists at the path."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """
        Delete the file at the path.

        Returns:
            True if a file was removed, False if there was nothing to delete
        """
        pass

    @abstractmethod
    async def list(self, path: str, pattern: Optional[str] = None) -> List[str]:
        """
        List files below a directory, recursively.

        Args:
            path: Directory path to list
            pattern: Optional glob pattern to filter files (e.g., "*.md")

        Returns:
            Relative file paths, sorted
        """
        pass
