"""Identity-graph profile models."""

from typing import Any, Optional

from pydantic import BaseModel, Field

PREFERRED_ID_TYPES = ("user_id", "email", "phone", "anonymous_id")


class ExternalId(BaseModel):
    """One identifier the identity graph knows a profile by."""
    type: str
    id: str


class IdentityProfile(BaseModel):
    """Traits and external ids returned by a profile lookup."""
    traits: dict[str, Any] = Field(default_factory=dict)
    external_ids: list[ExternalId] = Field(default_factory=list)

    def preferred_external_id(self) -> Optional[ExternalId]:
        """First external id in user_id > email > phone > anonymous_id order."""
        for id_type in PREFERRED_ID_TYPES:
            for external_id in self.external_ids:
                if external_id.type == id_type:
                    return external_id
        return None

    def customer_profile(self) -> dict[str, Any]:
        """Flatten traits into the metadata shape consumed by context enrichment."""
        traits = self.traits
        return {
            "is_existing_customer": True,
            "first_name": traits.get("firstName") or traits.get("first_name"),
            "last_name": traits.get("lastName") or traits.get("last_name"),
            "name": traits.get("name"),
            "email": traits.get("email"),
            "phone": traits.get("phone"),
            "customer_tier": traits.get("customerTier"),
            "purchase_history": traits.get("purchaseHistory"),
            "support_tickets": traits.get("supportTickets"),
            "preferences": traits.get("preferences"),
            "traits": dict(traits),
        }
