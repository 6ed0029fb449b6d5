"""
File-based run-state store.

One JSON file per subject inside ``data_dir``:

    runstate-<quoted subject id>.json
    {"conversationId": "...", "stateString": "...", "timestamp": 1718000000000}

Writes go to a temporary file first and are moved into place, so a
crash mid-write leaves the previous checkpoint intact. Blocking file
I/O runs in the default thread pool to keep the event loop free.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

from pydantic import ValidationError

from omnichannel.errors import PersistenceFailureError
from omnichannel.persistence.base import DEFAULT_MAX_AGE_MS, Clock, RunStateStore
from omnichannel.schemas.run_state_schema import RunStateRecord
from omnichannel.utils import now_ms

logger = logging.getLogger(__name__)

FILE_PREFIX = "runstate-"
FILE_SUFFIX = ".json"


class FileRunStateStore(RunStateStore):
    """Stores each subject's checkpoint as a JSON file on the local filesystem."""

    def __init__(
        self,
        data_dir: str = "./data/conversation-states",
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(max_age_ms=max_age_ms, clock=clock)
        self.data_dir = Path(data_dir)

    def path_for(self, subject_id: str) -> Path:
        return self.data_dir / f"{FILE_PREFIX}{quote(subject_id, safe='')}{FILE_SUFFIX}"

    async def init(self) -> None:
        try:
            await asyncio.to_thread(self.data_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to initialize file state store at %s: %s", self.data_dir, exc)
            raise PersistenceFailureError(f"Cannot create {self.data_dir}") from exc
        logger.info("File state store initialized at %s", self.data_dir)

    async def save_state(self, subject_id: str, serialized: str) -> None:
        record = RunStateRecord(
            conversation_id=subject_id,
            state_string=serialized,
            timestamp=self._clock(),
        )
        path = self.path_for(subject_id)
        try:
            await asyncio.to_thread(_write_atomic, path, record.to_json())
        except OSError as exc:
            logger.error("Failed to save run-state for '%s': %s", subject_id, exc)
            raise PersistenceFailureError(f"Failed to save run-state for '{subject_id}'") from exc
        logger.debug("Run-state saved for '%s' (%d chars)", subject_id, len(serialized))

    async def load_state(self, subject_id: str) -> Optional[str]:
        path = self.path_for(subject_id)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            logger.error("Run-state file for '%s' is not valid UTF-8, removing", subject_id)
            await self._discard(subject_id)
            return None
        except OSError as exc:
            logger.error("Failed to read run-state for '%s': %s", subject_id, exc)
            return None

        if not raw.strip():
            logger.warning("Empty run-state file for '%s', removing", subject_id)
            await self._discard(subject_id)
            return None

        try:
            record = RunStateRecord.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(
                "Corrupted run-state file for '%s', removing: %s",
                subject_id, exc.errors()[0].get("msg", "invalid"),
            )
            await self._discard(subject_id)
            return None

        if record.is_expired(self._clock(), self.max_age_ms):
            logger.info(
                "Run-state for '%s' expired (age %dms), removing",
                subject_id, self._clock() - record.timestamp,
            )
            await self._discard(subject_id)
            return None

        return record.state_string

    async def delete_state(self, subject_id: str) -> None:
        path = self.path_for(subject_id)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            logger.error("Failed to delete run-state for '%s': %s", subject_id, exc)
            raise PersistenceFailureError(f"Failed to delete run-state for '{subject_id}'") from exc
        logger.debug("Run-state deleted for '%s'", subject_id)

    async def cleanup_old_states(self, max_age_ms: Optional[int] = None) -> int:
        max_age = max_age_ms if max_age_ms is not None else self.max_age_ms
        paths = await asyncio.to_thread(self._list_state_files)
        now = self._clock()
        removed = 0

        for path in paths:
            subject_id = unquote(path.name[len(FILE_PREFIX):-len(FILE_SUFFIX)])
            try:
                raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
                record = RunStateRecord.model_validate_json(raw)
                if not record.is_expired(now, max_age):
                    continue
            except FileNotFoundError:
                continue
            except (OSError, UnicodeDecodeError, ValidationError):
                logger.warning("Unreadable run-state file %s, removing", path.name)

            try:
                await asyncio.to_thread(path.unlink, missing_ok=True)
                removed += 1
            except OSError as exc:
                logger.warning("Failed to delete expired run-state for '%s': %s", subject_id, exc)

        if removed:
            logger.info("Cleaned up %d old run-state file(s)", removed)
        return removed

    async def _discard(self, subject_id: str) -> None:
        """Delete an unusable record without letting a failure escape a read."""
        try:
            await self.delete_state(subject_id)
        except PersistenceFailureError:
            logger.warning("Could not remove unusable run-state for '%s'", subject_id)

    def _list_state_files(self) -> list[Path]:
        if not self.data_dir.exists():
            return []
        return sorted(self.data_dir.glob(f"{FILE_PREFIX}*{FILE_SUFFIX}"))


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    os.replace(tmp_path, path)
