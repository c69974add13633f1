"""Storage service interfaces and implementations.

Provides abstract storage interface and JSON file-based implementation
used for endpoint caches, order book caches and the transaction log.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from cryptosage.errors import PersistenceError

logger = logging.getLogger(__name__)


class IStorageService(ABC):
    """Abstract base class for storage services.

    Defines the interface for saving, loading, and deleting JSON blobs
    with string keys.
    """

    @abstractmethod
    def save(self, key: str, data: Any) -> None:
        """Save data with the given key.

        Args:
            key: Unique identifier for the data
            data: JSON-serializable data to store

        Raises:
            PersistenceError: If the data cannot be written
        """
        ...

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Load data for the given key.

        Args:
            key: Unique identifier for the data

        Returns:
            The stored data, or None if not found
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete data for the given key."""
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether data is stored for the given key."""
        ...


class JsonFileStorage(IStorageService):
    """JSON file-based storage implementation.

    Stores each key as a separate JSON file in the specified base directory.
    Writes go to a temporary file in the same directory and are moved into
    place, so a reader never sees a half-written file.
    """

    def __init__(self, base_path: str | Path) -> None:
        """Initialize the JSON file storage.

        Args:
            base_path: Directory path where JSON files will be stored
        """
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _get_file_path(self, key: str) -> Path:
        safe_key = key.replace("/", "_").replace("\\", "_")
        return self._base_path / f"{safe_key}.json"

    def save(self, key: str, data: Any) -> None:
        """Save data to a JSON file atomically.

        Args:
            key: Unique identifier for the data
            data: JSON-serializable data to store

        Raises:
            PersistenceError: If data is not JSON-serializable or the file
                cannot be written
        """
        file_path = self._get_file_path(key)
        try:
            payload = json.dumps(data, indent=2, ensure_ascii=False)
            fd, tmp_name = tempfile.mkstemp(dir=self._base_path, prefix=f".{file_path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, file_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (TypeError, ValueError, OSError) as e:
            logger.error(f"Failed to save data for key '{key}': {e}")
            raise PersistenceError(key, str(e)) from e

    def load(self, key: str) -> Optional[Any]:
        """Load data from a JSON file.

        Returns:
            The stored data, or None if file doesn't exist or is corrupted
        """
        file_path = self._get_file_path(key)
        if not file_path.exists():
            return None

        try:
            with file_path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted data for key '{key}': {e}")
            return None
        except OSError as e:
            logger.error(f"Failed to load data for key '{key}': {e}")
            return None

    def delete(self, key: str) -> None:
        file_path = self._get_file_path(key)
        try:
            if file_path.exists():
                file_path.unlink()
        except OSError as e:
            logger.error(f"Failed to delete data for key '{key}': {e}")

    def exists(self, key: str) -> bool:
        return self._get_file_path(key).exists()
