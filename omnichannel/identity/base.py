"""Subject resolver interface."""

from abc import ABC, abstractmethod
from typing import Any

SubjectId = str


class SubjectResolver(ABC):
    """Maps raw channel metadata to a canonical, channel-independent SubjectId."""

    name: str = "base"

    @abstractmethod
    async def resolve(self, metadata: dict[str, Any]) -> SubjectId:
        """Resolve ``metadata`` (e.g. ``{"From": "+1415...", "channel": "sms"}``).

        Raises:
            IdentifierNotFoundError: If metadata holds no usable identifier.
        """

    async def merge(self, primary_id: SubjectId, secondary_id: SubjectId) -> None:
        """Record that two subject ids belong to the same customer."""
        raise NotImplementedError(f"{type(self).__name__} does not support merge")

    async def close(self) -> None:
        """Release network clients or flush pending writes."""
