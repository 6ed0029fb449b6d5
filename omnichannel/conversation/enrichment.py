"""Fresh executor input built from conversation history and customer profile."""

import json
from typing import Any

from omnichannel.schemas.context_schema import ConversationContext, Role, make_item

PROFILE_HEADER = "Customer Profile:"
_IDENTITY_TRAITS = {"firstName", "lastName", "first_name", "last_name", "email", "phone", "name"}


def format_customer_profile(profile: dict[str, Any]) -> str:
    """Render a resolved customer profile as a system message body."""
    lines = [PROFILE_HEADER]
    if profile.get("is_existing_customer"):
        lines.append("- This is an existing customer")
    else:
        lines.append("- This is a new customer")

    if profile.get("first_name"):
        name = " ".join(p for p in (profile["first_name"], profile.get("last_name")) if p)
        lines.append(f"- Name: {name}")
    elif profile.get("name"):
        lines.append(f"- Name: {profile['name']}")

    for key, label in (("email", "Email"), ("phone", "Phone"), ("customer_tier", "Customer Tier")):
        if profile.get(key):
            lines.append(f"- {label}: {profile[key]}")

    for key, label in (
        ("purchase_history", "Purchase History"),
        ("support_tickets", "Previous Support Tickets"),
        ("preferences", "Customer Preferences"),
    ):
        if profile.get(key):
            lines.append(f"- {label}: {json.dumps(profile[key], default=str)}")

    extra = ", ".join(
        f"{k}: {v}"
        for k, v in (profile.get("traits") or {}).items()
        if v and k not in _IDENTITY_TRAITS
    )
    if extra:
        lines.append(f"- Additional Customer Data: {extra}")

    lines.append("")
    lines.append(
        "This customer is already identified. Do not use lookup tools to find "
        "their details; use the profile above to personalize your answers."
    )
    return "\n".join(lines)


def build_fresh_input(context: ConversationContext) -> list[dict[str, Any]]:
    """History as executor input, led by the customer profile when one is known.

    The profile message goes after any leading system messages and is
    added at most once.
    """
    items = context.message_items()
    profile = context.metadata.get("customer_profile")
    if not profile:
        return items
    if any(
        item["role"] == Role.SYSTEM.value and PROFILE_HEADER in item["content"]
        for item in items
    ):
        return items

    insert_at = 0
    while insert_at < len(items) and items[insert_at]["role"] == Role.SYSTEM.value:
        insert_at += 1
    items.insert(insert_at, make_item(Role.SYSTEM, format_customer_profile(profile)))
    return items
