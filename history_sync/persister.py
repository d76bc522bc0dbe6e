"""Conditional writes with a single bounded retry on version conflicts."""

import time
from typing import Optional

from history_sync.errors import ConflictError, NotFoundError
from history_sync.storage import DocumentStore
from history_sync.utils.logger import get_logger


logger = get_logger()


class ConflictSafePersister:
    """Writes documents under an expected-version precondition."""

    def __init__(self, store: DocumentStore, max_retries: int = 1, backoff_seconds: float = 1.0):
        """
        Initialize the persister.

        Args:
            store: Document store performing the conditional writes
            max_retries: Retries after a conflict before giving up
            backoff_seconds: Pause before re-reading the current version
        """
        self.store = store
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def current_version(self, path: str) -> Optional[str]:
        """Version currently stored at ``path``, or None if nothing is there yet."""
        try:
            return self.store.read(path).version
        except NotFoundError:
            logger.info(f"📁 {path} does not exist yet — will create new one.")
            return None

    def persist(self, path: str, content: str, version: Optional[str], message: str) -> str:
        """
        Write ``content`` to ``path`` expecting ``version`` to be current.

        On a conflict the current version is re-read and the write retried,
        at most ``max_retries`` times. Errors other than ConflictError
        propagate immediately.

        Returns:
            Version token of the written document

        Raises:
            ConflictError: If the write still conflicts after the retries
        """
        attempt = 0
        while True:
            try:
                new_version = self.store.write(path, content, version, message)
                if attempt:
                    logger.info(f"✅ Retry successful: {path}")
                else:
                    logger.info(f"🚀 File successfully pushed: {path}")
                return new_version
            except ConflictError as e:
                if attempt >= self.max_retries:
                    logger.error(f"❌ Retry failed: {e}")
                    raise ConflictError(
                        f"Write to {path} still conflicts after {attempt + 1} attempts",
                        context={'path': path, 'operation': 'write', 'attempts': attempt + 1}
                    ) from e

                attempt += 1
                logger.warning(f"⚠️ Version conflict on {path}. Retrying with latest version...")
                if self.backoff_seconds:
                    time.sleep(self.backoff_seconds)
                version = self.current_version(path)
