from omnichannel.agents.executor import AgentExecutor, ExecutorResult, StreamingAgentExecutor
from omnichannel.agents.registry import DEFAULT_AGENT, AgentSpec, get_agent, get_registered_agents
from omnichannel.agents.scripted import ScriptedExecutor

__all__ = [
    "AgentExecutor", "ExecutorResult", "StreamingAgentExecutor",
    "AgentSpec", "DEFAULT_AGENT", "get_agent", "get_registered_agents",
    "ScriptedExecutor",
]
