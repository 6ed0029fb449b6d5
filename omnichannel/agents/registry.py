"""
Agent registry.

Agents are listed in an explicit table rather than discovered at
runtime. Each entry names the agent's prompt and the tools whose calls
must be approved by a human before they run.
"""

import logging
from dataclasses import dataclass, field

from omnichannel.agents.prompts import (
    CUSTOMER_SUPPORT_PROMPT,
    ESCALATION_PROMPT,
    SMS_STYLE_RULES,
    TRIAGE_PROMPT,
    VOICE_STYLE_RULES,
)
from omnichannel.errors import UnknownStrategyError

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "customer-support"

CHANNEL_STYLE_RULES = {
    "sms": SMS_STYLE_RULES,
    "voice": VOICE_STYLE_RULES,
}


@dataclass(frozen=True)
class AgentSpec:
    """Handle passed to the executor to select an agent."""
    name: str
    instructions: str
    tools: tuple[str, ...] = ()
    approval_tools: frozenset[str] = field(default_factory=frozenset)

    def needs_approval(self, tool_name: str) -> bool:
        return tool_name in self.approval_tools

    def for_channel(self, channel: str) -> "AgentSpec":
        """Copy of this agent with the channel's style rules appended."""
        rules = CHANNEL_STYLE_RULES.get(channel)
        if rules is None:
            return self
        return AgentSpec(
            name=self.name,
            instructions=self.instructions + rules,
            tools=self.tools,
            approval_tools=self.approval_tools,
        )


AGENTS: dict[str, AgentSpec] = {
    "customer-support": AgentSpec(
        name="customer-support",
        instructions=CUSTOMER_SUPPORT_PROMPT,
        tools=("lookup_customer", "lookup_order", "get_tracking_info",
               "process_refund", "escalate_to_human"),
        approval_tools=frozenset({"process_refund"}),
    ),
    "triage": AgentSpec(
        name="triage",
        instructions=TRIAGE_PROMPT,
        tools=("lookup_customer", "classify_intent"),
    ),
    "escalation": AgentSpec(
        name="escalation",
        instructions=ESCALATION_PROMPT,
        tools=("lookup_customer", "escalate_to_human"),
    ),
}


def get_agent(name: str = DEFAULT_AGENT, channel: str = "") -> AgentSpec:
    """Look up an agent by registered name.

    Raises:
        UnknownStrategyError: If the agent name is not registered.
    """
    spec = AGENTS.get(name)
    if spec is None:
        raise UnknownStrategyError(
            f"Agent '{name}' not registered. Available: {list(AGENTS)}"
        )
    return spec.for_channel(channel) if channel else spec


def get_registered_agents() -> list[str]:
    """Return names of all registered agents."""
    return list(AGENTS)
