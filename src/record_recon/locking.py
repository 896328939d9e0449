"""Per-batch run locks so two runs never interleave writes to one batch."""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
import logging
import threading

from .utils.exceptions import ConcurrentRunConflictError

logger = logging.getLogger(__name__)


class BatchLockRegistry:
    """
    Non-blocking locks keyed by batch reference.

    A second caller for a batch that is already running gets a
    ``ConcurrentRunConflictError`` instead of waiting.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._held: dict[str, dict[str, object]] = {}

    @contextmanager
    def hold(self, batch_ref: str, owner: Optional[str] = None) -> Iterator[None]:
        self.acquire(batch_ref, owner)
        try:
            yield
        finally:
            self.release(batch_ref)

    def acquire(self, batch_ref: str, owner: Optional[str] = None) -> None:
        with self._guard:
            holder = self._held.get(batch_ref)
            if holder is not None:
                raise ConcurrentRunConflictError(
                    f"Reconciliation already running since {holder['acquired_at']} "
                    f"(owner={holder['owner']})",
                    batch_ref=batch_ref,
                    phase="lock",
                )
            self._held[batch_ref] = {
                "owner": owner,
                "acquired_at": datetime.now(timezone.utc).isoformat(),
            }
        logger.debug(f"Acquired run lock for batch {batch_ref}")

    def release(self, batch_ref: str) -> None:
        with self._guard:
            self._held.pop(batch_ref, None)
        logger.debug(f"Released run lock for batch {batch_ref}")

    def is_locked(self, batch_ref: str) -> bool:
        with self._guard:
            return batch_ref in self._held


# Registry used by every engine that is not given one explicitly
DEFAULT_LOCKS = BatchLockRegistry()
