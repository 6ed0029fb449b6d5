"""
Identity-graph subject resolver.

Resolution order:
1. An ``anonymousId`` already carried by the channel wins outright.
2. Otherwise the profile API is queried by userId > email > phone,
   through a short-lived cache. A hit copies the profile into
   ``metadata["customer_profile"]`` and the subject id is derived from
   the profile's preferred external id.
3. A miss creates a new identity. An authenticated user (``userId``) is
   registered synchronously and any failure propagates. Anonymous
   identities are derived from the phone or e-mail so repeat visitors
   land on the same id, and their registration runs in the background.
"""

import asyncio
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from omnichannel.errors import IdentityMergeError, IdentityServiceError
from omnichannel.identity.base import SubjectId, SubjectResolver
from omnichannel.identity.phone_resolver import extract_phone
from omnichannel.identity.profile_cache import TTLCache
from omnichannel.schemas.identity_schema import IdentityProfile
from omnichannel.utils import mask_email, normalize_phone

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "segment_"
USER_SUBJECT_PREFIX = "segment_user_"
ANONYMOUS_ID_LENGTH = 32


class IdentityClient(Protocol):
    """Calls the resolver needs from an identity graph."""

    async def fetch_profile(self, external_id: str) -> Optional[IdentityProfile]: ...

    async def identify(
        self,
        traits: dict[str, Any],
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> None: ...

    async def alias(self, previous_id: str, user_id: str) -> None: ...

    async def close(self) -> None: ...


def anonymous_id_for(seed: str) -> str:
    """Stable anonymous id for a phone number or e-mail address."""
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:ANONYMOUS_ID_LENGTH]


def strip_subject_prefix(subject_id: SubjectId) -> str:
    for prefix in (USER_SUBJECT_PREFIX, SUBJECT_PREFIX):
        if subject_id.startswith(prefix):
            return subject_id[len(prefix):]
    return subject_id


class SegmentSubjectResolver(SubjectResolver):
    """Resolves subjects against an external identity graph."""

    name = "segment"

    def __init__(
        self,
        client: IdentityClient,
        cache: Optional[TTLCache[IdentityProfile]] = None,
    ) -> None:
        self._client = client
        self._cache: TTLCache[IdentityProfile] = cache or TTLCache()
        self._background: set[asyncio.Task] = set()

    async def resolve(self, metadata: dict[str, Any]) -> SubjectId:
        anonymous_id = metadata.get("anonymousId")
        if isinstance(anonymous_id, str) and anonymous_id.strip():
            return f"{SUBJECT_PREFIX}{anonymous_id.strip()}"

        user_id = _clean(metadata.get("userId"))
        email = _clean(metadata.get("email"))
        raw_phone = extract_phone(metadata)
        phone = normalize_phone(raw_phone) if raw_phone else None
        channel = metadata.get("channel")

        profile, cached = await self._lookup_profile(user_id, email, phone)
        if profile is not None:
            preferred = profile.preferred_external_id()
            if preferred is not None:
                metadata["customer_profile"] = profile.customer_profile()
                if preferred.type == "user_id":
                    return f"{USER_SUBJECT_PREFIX}{preferred.id}"
                return f"{SUBJECT_PREFIX}{preferred.id}"

        traits = {
            "phone": phone,
            "email": email,
            "channel": channel,
            "firstSeen": datetime.now(timezone.utc).isoformat(),
        }
        traits = {k: v for k, v in traits.items() if v}

        if user_id:
            # Authenticated identities must exist in the graph before use.
            await self._client.identify(traits, user_id=user_id, channel=channel)
            logger.info("Registered new authenticated subject for user %s", user_id)
            return f"{USER_SUBJECT_PREFIX}{user_id}"

        seed = phone or email
        if seed:
            anonymous = anonymous_id_for(seed)
        else:
            anonymous = uuid.uuid4().hex
            logger.warning(
                "No identifier in metadata (keys: %s), using random anonymous id",
                sorted(metadata.keys()),
            )
        if cached:
            logger.debug("Anonymous identity already registered within cache window")
        else:
            self._register_in_background(traits, anonymous, channel)
        return f"{SUBJECT_PREFIX}{anonymous}"

    async def merge(self, primary_id: SubjectId, secondary_id: SubjectId) -> None:
        """Alias ``secondary_id`` onto ``primary_id`` in the identity graph.

        Raises:
            IdentityMergeError: If the identity graph rejects the alias call.
        """
        if primary_id == secondary_id:
            return
        try:
            await self._client.alias(
                previous_id=strip_subject_prefix(secondary_id),
                user_id=strip_subject_prefix(primary_id),
            )
        except IdentityServiceError as exc:
            logger.error("Failed to merge %s into %s: %s", secondary_id, primary_id, exc)
            raise IdentityMergeError(
                f"Could not merge '{secondary_id}' into '{primary_id}'"
            ) from exc
        logger.info("Merged subject %s into %s", secondary_id, primary_id)

    async def close(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._client.close()

    async def _lookup_profile(
        self,
        user_id: Optional[str],
        email: Optional[str],
        phone: Optional[str],
    ) -> tuple[Optional[IdentityProfile], bool]:
        """Return ``(profile, cached)``; ``cached`` is True when served from the cache."""
        if user_id:
            key = f"user_id:{user_id}"
        elif email:
            key = f"email:{email}"
        elif phone:
            key = f"phone:{phone}"
        else:
            return None, False

        if key in self._cache:
            return self._cache.get(key), True

        try:
            profile = await self._client.fetch_profile(key)
        except IdentityServiceError as exc:
            logger.warning("Profile lookup failed, treating as new identity: %s", exc)
            return None, False

        self._cache.set(key, profile)
        if profile is None:
            logger.debug("No profile found for %s", _describe(key))
        return profile, False

    def _register_in_background(
        self, traits: dict[str, Any], anonymous_id: str, channel: Optional[str]
    ) -> None:
        task = asyncio.create_task(
            self._client.identify(traits, anonymous_id=anonymous_id, channel=channel)
        )
        self._background.add(task)
        task.add_done_callback(self._on_registered)

    def _on_registered(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Anonymous identity registration was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Anonymous identity registration failed: %s", exc)
        else:
            logger.debug("Anonymous identity registered")


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _describe(key: str) -> str:
    id_type, _, value = key.partition(":")
    if id_type == "email":
        return f"email {mask_email(value)}"
    return id_type
