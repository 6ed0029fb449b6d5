"""Redis implementation of RunStateStore.

Each checkpoint is one string key holding the same JSON record the file
backend writes. Keys carry a Redis TTL of ``max_age_ms`` so expired
records disappear on their own; the timestamp inside the record is still
checked on read so a shorter max age passed to ``cleanup_old_states`` is
honoured.

Key structure:
- {key_prefix}{subject_id} - serialized RunStateRecord
"""

import logging
from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError

from omnichannel.errors import PersistenceFailureError
from omnichannel.persistence.base import DEFAULT_MAX_AGE_MS, Clock, RunStateStore
from omnichannel.schemas.run_state_schema import RunStateRecord
from omnichannel.utils import now_ms

logger = logging.getLogger(__name__)


class RedisRunStateStore(RunStateStore):
    """Run-state store backed by a Redis server."""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "runstate:",
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Clock = now_ms,
    ) -> None:
        """
        Args:
            client: Redis client created with ``decode_responses=True``
            key_prefix: Prefix for every run-state key
            max_age_ms: Record lifetime, also used as the key TTL
            clock: Epoch-millisecond clock, injectable for tests
        """
        super().__init__(max_age_ms=max_age_ms, clock=clock)
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisRunStateStore":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, subject_id: str) -> str:
        return f"{self._prefix}{subject_id}"

    async def init(self) -> None:
        try:
            await self._client.ping()
        except redis.RedisError as exc:
            logger.error("Redis state store unreachable: %s", exc)
            raise PersistenceFailureError("Redis state store unreachable") from exc
        logger.info("Redis state store initialized (prefix=%s)", self._prefix)

    async def save_state(self, subject_id: str, serialized: str) -> None:
        record = RunStateRecord(
            conversation_id=subject_id,
            state_string=serialized,
            timestamp=self._clock(),
        )
        try:
            await self._client.set(self._key(subject_id), record.to_json(), px=self.max_age_ms)
        except redis.RedisError as exc:
            logger.error("Failed to save run-state for '%s': %s", subject_id, exc)
            raise PersistenceFailureError(f"Failed to save run-state for '{subject_id}'") from exc

    async def load_state(self, subject_id: str) -> Optional[str]:
        try:
            raw = await self._client.get(self._key(subject_id))
        except redis.RedisError as exc:
            logger.error("Failed to load run-state for '%s': %s", subject_id, exc)
            return None
        if not raw:
            return None

        try:
            record = RunStateRecord.model_validate_json(raw)
        except ValidationError:
            logger.error("Corrupted run-state for '%s', removing", subject_id)
            await self._discard(subject_id)
            return None

        if record.is_expired(self._clock(), self.max_age_ms):
            await self._discard(subject_id)
            return None
        return record.state_string

    async def delete_state(self, subject_id: str) -> None:
        try:
            await self._client.delete(self._key(subject_id))
        except redis.RedisError as exc:
            logger.error("Failed to delete run-state for '%s': %s", subject_id, exc)
            raise PersistenceFailureError(f"Failed to delete run-state for '{subject_id}'") from exc

    async def cleanup_old_states(self, max_age_ms: Optional[int] = None) -> int:
        max_age = max_age_ms if max_age_ms is not None else self.max_age_ms
        now = self._clock()
        removed = 0
        try:
            async for key in self._client.scan_iter(match=f"{self._prefix}*"):
                raw = await self._client.get(key)
                if not raw:
                    continue
                try:
                    expired = RunStateRecord.model_validate_json(raw).is_expired(now, max_age)
                except ValidationError:
                    expired = True
                if expired:
                    removed += await self._client.delete(key)
        except redis.RedisError as exc:
            logger.error("Run-state cleanup interrupted after %d removal(s): %s", removed, exc)
            return removed

        if removed:
            logger.info("Cleaned up %d old run-state key(s)", removed)
        return removed

    async def close(self) -> None:
        await self._client.aclose()

    async def _discard(self, subject_id: str) -> None:
        try:
            await self.delete_state(subject_id)
        except PersistenceFailureError:
            logger.warning("Could not remove unusable run-state for '%s'", subject_id)
