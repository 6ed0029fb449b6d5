"""HTTP client for a Segment-style identity graph.

Two APIs are involved:
- the Profile API (read): traits and external ids for a known profile,
  authenticated with the profile access token;
- the tracking API (write): ``identify`` and ``alias`` calls,
  authenticated with the source write key.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from omnichannel.errors import IdentityServiceError
from omnichannel.schemas.identity_schema import ExternalId, IdentityProfile

logger = logging.getLogger(__name__)

PROFILE_API_URLS = {
    "us": "https://profiles.segment.com",
    "eu": "https://profiles.euw1.segment.com",
}
TRACKING_API_URLS = {
    "us": "https://api.segment.io",
    "eu": "https://events.eu1.segmentapis.com",
}
LIBRARY_CONTEXT = {"name": "omnichannel-sessions", "version": "1.0.0"}


class SegmentClient:
    """Thin async wrapper over the Segment Profile and tracking HTTP APIs."""

    def __init__(
        self,
        write_key: str,
        profile_token: str = "",
        space_id: str = "",
        region: str = "us",
        timeout_sec: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._write_key = write_key
        self._profile_token = profile_token
        self._space_id = space_id
        self._region = region
        self._timeout = timeout_sec
        self._client = http_client

    @property
    def profile_api_enabled(self) -> bool:
        return bool(self._profile_token and self._space_id)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def fetch_profile(self, external_id: str) -> Optional[IdentityProfile]:
        """Look up a profile by ``type:value`` external id. Returns None on 404."""
        if not self.profile_api_enabled:
            return None
        base = (
            f"{PROFILE_API_URLS[self._region]}/v1/spaces/{self._space_id}"
            f"/collections/users/profiles/{external_id}"
        )
        client = await self._ensure_client()
        auth = (self._profile_token, "")

        try:
            traits_resp = await client.get(f"{base}/traits", auth=auth)
            if traits_resp.status_code == 404:
                return None
            traits_resp.raise_for_status()
            ids_resp = await client.get(f"{base}/external_ids", auth=auth)
            ids_resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise IdentityServiceError(
                f"Profile API error: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise IdentityServiceError(f"Network error contacting Profile API: {exc}") from exc

        try:
            profile = _parse_profile(traits_resp.json(), ids_resp.json())
        except (ValueError, TypeError, AttributeError) as exc:
            raise IdentityServiceError(f"Malformed Profile API response: {exc}") from exc

        logger.debug(
            "Profile API lookup succeeded for %s identifier", external_id.split(":", 1)[0]
        )
        return profile

    async def identify(
        self,
        traits: dict[str, Any],
        user_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> None:
        body: dict[str, Any] = {
            "traits": traits,
            "context": self._context(channel),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if user_id:
            body["userId"] = user_id
        if anonymous_id:
            body["anonymousId"] = anonymous_id
        await self._track("identify", body)

    async def alias(self, previous_id: str, user_id: str) -> None:
        await self._track(
            "alias",
            {"previousId": previous_id, "userId": user_id, "context": self._context(None)},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _track(self, call: str, body: dict[str, Any]) -> None:
        client = await self._ensure_client()
        url = f"{TRACKING_API_URLS[self._region]}/v1/{call}"
        try:
            response = await client.post(url, json=body, auth=(self._write_key, ""))
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise IdentityServiceError(
                f"Tracking API {call} failed: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise IdentityServiceError(f"Tracking API {call} failed: {exc}") from exc

    @staticmethod
    def _context(channel: Optional[str]) -> dict[str, Any]:
        context: dict[str, Any] = {"library": dict(LIBRARY_CONTEXT)}
        if channel:
            context["channel"] = channel
        return context


def _parse_profile(traits_body: Any, ids_body: Any) -> IdentityProfile:
    """Build a profile from the two Profile API bodies.

    Raises:
        TypeError: If either body is not a JSON object.
        pydantic.ValidationError: If an external id entry has the wrong shape.
    """
    if not isinstance(traits_body, dict) or not isinstance(ids_body, dict):
        raise TypeError("expected JSON objects from the Profile API")
    external_ids = [
        ExternalId(type=item["type"], id=item["id"])
        for item in ids_body.get("data") or []
        if isinstance(item, dict) and "type" in item and "id" in item
    ]
    return IdentityProfile(traits=traits_body.get("traits") or {}, external_ids=external_ids)
