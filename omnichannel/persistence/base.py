"""
Run-state store interface shared by every persistence backend.

A run-state is an opaque checkpoint string produced by the agent
executor. Stores never look inside it; their only contract is that the
string handed to ``save_state`` comes back unchanged from ``load_state``
until it is older than the store's max age.

Failure semantics all backends follow:
- ``load_state`` never raises. Missing, expired, unreadable or corrupt
  records all come back as ``None`` so the caller starts a fresh turn.
- ``save_state`` and ``delete_state`` raise ``PersistenceFailureError``.
- ``delete_state`` on a missing record is a no-op.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from omnichannel.utils import now_ms

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS = 24 * 60 * 60 * 1000
SLOW_OPERATION_THRESHOLD_MS = 200

Clock = Callable[[], int]


class RunStateStore(ABC):
    """Durable key/value store for serialized executor checkpoints."""

    def __init__(self, max_age_ms: int = DEFAULT_MAX_AGE_MS, clock: Clock = now_ms) -> None:
        self.max_age_ms = max_age_ms
        self._clock = clock

    @abstractmethod
    async def init(self) -> None:
        """Prepare the backend (directories, connections)."""

    @abstractmethod
    async def save_state(self, subject_id: str, serialized: str) -> None:
        """Store ``serialized`` for ``subject_id``, replacing any previous record."""

    @abstractmethod
    async def load_state(self, subject_id: str) -> Optional[str]:
        """Return the stored checkpoint, or None if absent, expired or unreadable."""

    @abstractmethod
    async def delete_state(self, subject_id: str) -> None:
        """Remove the checkpoint for ``subject_id`` if one exists."""

    @abstractmethod
    async def cleanup_old_states(self, max_age_ms: Optional[int] = None) -> int:
        """Delete every record older than ``max_age_ms``. Returns the count removed."""

    async def close(self) -> None:
        """Release backend resources. Most backends hold none."""


@contextmanager
def timed_operation(
    operation: str,
    subject_id: str = "",
    threshold_ms: int = SLOW_OPERATION_THRESHOLD_MS,
) -> Iterator[None]:
    """Log a warning when the wrapped store call exceeds ``threshold_ms``.

    The warning is logged whether the call succeeds or raises.
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        if duration_ms > threshold_ms:
            logger.warning(
                "Slow persistence operation: %s for '%s' took %.0fms (threshold %dms)",
                operation, subject_id, duration_ms, threshold_ms,
            )
        else:
            logger.debug("%s for '%s' took %.1fms", operation, subject_id, duration_ms)
