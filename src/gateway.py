"""
Edit Gateway - read and replace the reconciliation source.

Saving never compiles the source: an invalid edit is accepted and its load
error surfaces on the next dispatched event.
"""

import logging

from code_store import CodeStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_SOURCE_BYTES = 1024 * 1024


class ValidationError(ValueError):
    """Raised when a submitted source is rejected before it reaches the store."""

    def __init__(self, message: str, too_large: bool = False):
        super().__init__(message)
        self.too_large = too_large


class EditGateway:
    """External-facing operations on the code store."""

    def __init__(
        self,
        code_store: CodeStore,
        max_source_bytes: int = DEFAULT_MAX_SOURCE_BYTES,
    ):
        self.code_store = code_store
        self.max_source_bytes = max_source_bytes

    def get_current_source(self) -> str:
        """Return the current reconciliation source."""
        return self.code_store.read()

    def update_source(self, text: str) -> None:
        """
        Replace the reconciliation source.

        Args:
            text: The complete new source.

        Raises:
            ValidationError: If ``text`` is not a non-empty string, cannot be
                encoded as UTF-8 or exceeds the size limit.
            CodeStoreError: If the source could not be saved.
        """
        if not isinstance(text, str) or not text:
            raise ValidationError("Code is required")
        try:
            size = len(text.encode("utf-8"))
        except UnicodeEncodeError:
            raise ValidationError("Code must be valid UTF-8")
        if size > self.max_source_bytes:
            raise ValidationError(
                f"Code exceeds maximum size of {self.max_source_bytes // 1024}KB",
                too_large=True,
            )
        self.code_store.write(text)
        logger.info(f"Reconciler source replaced ({size} bytes)")
