"""
Code Store - the single mutable slot holding the reconciliation source.

The source lives in memory and, optionally, in one plain-text file that is
replaced wholesale on every write.
"""

import logging
import os
import tempfile
import threading
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from logstream import LogBroadcaster

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_PATH = Path(__file__).with_name("default_reconciler.py")


class CodeStoreError(Exception):
    """Raised when the reconciliation source cannot be persisted or read."""


@lru_cache(maxsize=1)
def default_template() -> str:
    """Return the built-in reconciliation source used until one is saved."""
    return DEFAULT_TEMPLATE_PATH.read_text(encoding="utf-8")


class CodeStore:
    """
    Holds the current reconciliation source.

    Reads never observe a partial value: the file is written to a temporary
    sibling and moved into place, then the in-memory text is swapped.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        broadcaster: Optional[LogBroadcaster] = None,
    ):
        self.path = Path(path) if path else None
        self._broadcaster = broadcaster
        self._source: Optional[str] = None
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()

    def load(self) -> str:
        """
        Initialize the store from the persisted file, if any.

        A missing or unreadable file leaves the store on the default template.

        Returns:
            The source now held by the store.
        """
        if self.path is not None and self.path.exists():
            try:
                source = self.path.read_bytes().decode("utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"Failed to read reconciler source {self.path}: {e}")
            else:
                with self._lock:
                    self._source = source
                logger.info(f"Loaded reconciler source from {self.path}")
        return self.read()

    def read(self) -> str:
        """Return the current source, falling back to the default template."""
        with self._lock:
            source = self._source
        if source is None:
            return default_template()
        return source

    def write(self, text: str) -> None:
        """
        Atomically replace the stored source.

        Args:
            text: The complete new source.

        Raises:
            CodeStoreError: If the source could not be persisted. The stored
                value is left unchanged.
        """
        with self._write_lock:
            if self.path is not None:
                self._persist(text)
            with self._lock:
                self._source = text
        logger.info("Reconciler source updated")

        if self._broadcaster is not None:
            try:
                self._broadcaster.info("Code updated successfully")
            except Exception as e:
                logger.error(f"Failed to publish code update notice: {e}")

    def _persist(self, text: str) -> None:
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (OSError, UnicodeError) as e:
            logger.error(f"Failed to save reconciler source to {self.path}: {e}")
            raise CodeStoreError(f"Failed to save code: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
