"""Filesystem document store with atomic writes."""

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a document store operation fails."""


class FileStore:
    """Key-value document store rooted at a directory.

    Keys are paths relative to the root. Writes go to a temporary file in
    the target directory and are moved into place with os.replace, so a
    reader sees either the old document or the new one.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, path: str | Path) -> Path:
        return self.root / path

    def read(self, path: str | Path) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise StoreError(f"read {target} failed: {e}") from e

    def write(self, path: str | Path, data: bytes) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise StoreError(f"write {target} failed: {e}") from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"write {target} failed: {e}") from e

    def exists(self, path: str | Path) -> bool:
        return self._resolve(path).exists()

    def delete_tree(self, path: str | Path) -> None:
        target = self._resolve(path)
        if not target.exists():
            return
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise StoreError(f"delete {target} failed: {e}") from e
        logger.info("Deleted %s", target)
