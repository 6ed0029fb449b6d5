"""
Phone-based subject resolver with a persisted phone → subject map.

SMS webhooks and voice calls from the same handset carry the same
number in different shapes (``From``, ``phone``, ``callerPhone``...).
The resolver normalizes it to E.164 and looks the result up in a JSON
map file, creating the mapping on first sighting:

    {"+14155550100": "phone_+14155550100"}

The map is rewritten in full whenever a mapping is added or merged.
No network I/O happens here.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from omnichannel.errors import IdentifierNotFoundError, PersistenceFailureError
from omnichannel.identity.base import SubjectId, SubjectResolver
from omnichannel.utils import mask_phone, normalize_phone

logger = logging.getLogger(__name__)

# Checked in order; the first non-blank string wins.
PHONE_KEYS = ("from", "From", "phone", "phoneNumber", "callerPhone", "senderPhone")
SUBJECT_PREFIX = "phone_"


def extract_phone(metadata: dict[str, Any]) -> Optional[str]:
    """Return the first non-blank phone-like value in ``metadata``."""
    for key in PHONE_KEYS:
        value = metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class PhoneSubjectResolver(SubjectResolver):
    """Resolves channel metadata to ``phone_<E.164>`` subject ids."""

    name = "phone"

    def __init__(self, map_file: str = "./data/subject-map.json") -> None:
        self.map_file = Path(map_file)
        self._mappings: dict[str, SubjectId] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    async def resolve(self, metadata: dict[str, Any]) -> SubjectId:
        raw_phone = extract_phone(metadata)
        if raw_phone is None:
            logger.warning(
                "No phone number in metadata (keys: %s)", sorted(metadata.keys())
            )
            raise IdentifierNotFoundError("No phone number found in metadata")

        normalized = normalize_phone(raw_phone)
        if normalized == "+":
            raise IdentifierNotFoundError(f"Phone value has no digits: {raw_phone!r}")

        async with self._lock:
            await self._ensure_loaded()
            subject_id = self._mappings.get(normalized)
            if subject_id is None:
                subject_id = f"{SUBJECT_PREFIX}{normalized}"
                self._mappings[normalized] = subject_id
                try:
                    await self._persist()
                except PersistenceFailureError:
                    # Keep memory in step with the file so the next sighting retries.
                    del self._mappings[normalized]
                    raise
                logger.info(
                    "New phone subject mapped: %s -> %s",
                    mask_phone(normalized), subject_id,
                )

        logger.debug(
            "Phone %s resolved to %s (channel=%s)",
            mask_phone(normalized), subject_id, metadata.get("channel", "unknown"),
        )
        return subject_id

    async def merge(self, primary_id: SubjectId, secondary_id: SubjectId) -> None:
        """Point every phone mapped to ``secondary_id`` at ``primary_id``.

        Merging an id into itself, or merging twice, changes nothing.

        Raises:
            PersistenceFailureError: If the updated map cannot be written.
        """
        if primary_id == secondary_id:
            return
        async with self._lock:
            await self._ensure_loaded()
            remapped = [
                phone for phone, sid in self._mappings.items() if sid == secondary_id
            ]
            if not remapped:
                logger.debug("Merge %s -> %s: nothing to remap", secondary_id, primary_id)
                return
            for phone in remapped:
                self._mappings[phone] = primary_id
            try:
                await self._persist()
            except PersistenceFailureError:
                for phone in remapped:
                    self._mappings[phone] = secondary_id
                raise
        logger.info(
            "Merged subject %s into %s (%d phone mapping(s))",
            secondary_id, primary_id, len(remapped),
        )

    def mapped_subject(self, phone: str) -> Optional[SubjectId]:
        """Current mapping for ``phone`` without creating one."""
        return self._mappings.get(normalize_phone(phone))

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        try:
            raw = await asyncio.to_thread(self.map_file.read_text, encoding="utf-8")
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("subject map must be a JSON object")
            self._mappings = {str(k): str(v) for k, v in data.items()}
            logger.info("Loaded %d phone subject mapping(s)", len(self._mappings))
        except FileNotFoundError:
            logger.info("Subject map %s not found, starting fresh", self.map_file)
        except (OSError, ValueError) as exc:
            logger.warning("Subject map %s unreadable (%s), starting fresh", self.map_file, exc)
        self._loaded = True

    async def _persist(self) -> None:
        payload = json.dumps(self._mappings, indent=2, sort_keys=True)
        try:
            await asyncio.to_thread(_write_map, self.map_file, payload)
        except OSError as exc:
            logger.error("Failed to persist subject map %s: %s", self.map_file, exc)
            raise PersistenceFailureError(f"Failed to persist {self.map_file}") from exc


def _write_map(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    os.replace(tmp_path, path)
