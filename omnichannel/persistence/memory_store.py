"""In-process run-state store for tests, demos and single-node development."""

import logging
from typing import Optional

from omnichannel.persistence.base import DEFAULT_MAX_AGE_MS, Clock, RunStateStore
from omnichannel.schemas.run_state_schema import RunStateRecord
from omnichannel.utils import now_ms

logger = logging.getLogger(__name__)


class InMemoryRunStateStore(RunStateStore):
    """Keeps checkpoints in a dict. Nothing survives a restart."""

    def __init__(self, max_age_ms: int = DEFAULT_MAX_AGE_MS, clock: Clock = now_ms) -> None:
        super().__init__(max_age_ms=max_age_ms, clock=clock)
        self._records: dict[str, RunStateRecord] = {}

    async def init(self) -> None:
        logger.debug("In-memory state store ready")

    async def save_state(self, subject_id: str, serialized: str) -> None:
        self._records[subject_id] = RunStateRecord(
            conversation_id=subject_id,
            state_string=serialized,
            timestamp=self._clock(),
        )

    async def load_state(self, subject_id: str) -> Optional[str]:
        record = self._records.get(subject_id)
        if record is None:
            return None
        if record.is_expired(self._clock(), self.max_age_ms):
            del self._records[subject_id]
            return None
        return record.state_string

    async def delete_state(self, subject_id: str) -> None:
        self._records.pop(subject_id, None)

    async def cleanup_old_states(self, max_age_ms: Optional[int] = None) -> int:
        max_age = max_age_ms if max_age_ms is not None else self.max_age_ms
        now = self._clock()
        expired = [sid for sid, rec in self._records.items() if rec.is_expired(now, max_age)]
        for subject_id in expired:
            del self._records[subject_id]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)
