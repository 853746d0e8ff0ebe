"""JSON file persistence for the semantic memory store."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from filelock import FileLock
from loguru import logger
from pydantic import ValidationError

from vector_backend.models import StoreSnapshot


class StoreError(Exception):
    """Raised when the store file cannot be written."""


class JsonStore:
    """Single-file JSON store with locked, atomic writes.

    The lock file sits next to the store so that two server processes pointed
    at the same path never interleave writes. Reads only take the lock long
    enough to copy the file into memory.
    """

    LOCK_TIMEOUT = 30

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser().resolve()
        self.lock_path = self.path.with_name(f".{self.path.name}.lock")

    def _lock(self) -> FileLock:
        return FileLock(str(self.lock_path), timeout=self.LOCK_TIMEOUT)

    def load(self) -> StoreSnapshot | None:
        """Load the snapshot from disk.

        Returns:
            The stored snapshot, or None if no store exists yet. A corrupt store
            is backed up next to the original and treated as missing.
        """
        if not self.path.exists():
            return None

        with self._lock():
            raw = self.path.read_bytes()

        try:
            return StoreSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Failed to load store {self.path}: {e}. Backing up and starting fresh.")
            backup_path = self.path.with_suffix(self.path.suffix + ".bak")
            shutil.copy(self.path, backup_path)
            logger.warning(f"Corrupted store backed up to {backup_path}")
            return None

    def save(self, snapshot: StoreSnapshot) -> Path:
        """Persist the snapshot using a temp file and atomic rename.

        Raises:
            StoreError: If the file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")

        with self._lock():
            try:
                with open(temp_file, "w", encoding="utf-8") as f:
                    f.write(snapshot.model_dump_json())
                    f.flush()
                    os.fsync(f.fileno())
                temp_file.replace(self.path)
            except OSError as e:
                if temp_file.exists():
                    temp_file.unlink()
                raise StoreError(f"Failed to save store to {self.path}: {e}") from e

        logger.debug(f"Saved {len(snapshot.documents)} documents to {self.path}")
        return self.path
