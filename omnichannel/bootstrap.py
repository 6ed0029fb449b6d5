"""
Process wiring.

Everything stateful is built once here and passed down explicitly; no
component reaches for a global instance. Tests build the same graph
with in-memory stores and a scripted executor.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from omnichannel.agents.executor import AgentExecutor
from omnichannel.agents.scripted import ScriptedExecutor
from omnichannel.channels.sms import SmsChannel
from omnichannel.channels.voice import VoiceSession
from omnichannel.config import AppConfig, settings
from omnichannel.conversation.approvals import ApprovalCoordinator
from omnichannel.conversation.events import EventBus, log_event
from omnichannel.conversation.locks import SubjectLocks
from omnichannel.conversation.orchestrator import TurnOptions, TurnOrchestrator
from omnichannel.conversation.session_manager import SessionManager
from omnichannel.conversation.sweeper import LifecycleSweeper
from omnichannel.identity import create_resolver
from omnichannel.identity.base import SubjectResolver
from omnichannel.persistence import create_run_state_store
from omnichannel.persistence.base import RunStateStore

logger = logging.getLogger(__name__)


@dataclass
class SessionServices:
    """The assembled session manager and its channel entry points."""
    config: AppConfig
    resolver: SubjectResolver
    run_state_store: RunStateStore
    sessions: SessionManager
    orchestrator: TurnOrchestrator
    approvals: ApprovalCoordinator
    sweeper: LifecycleSweeper
    sms: SmsChannel

    def voice_session(self, setup: dict[str, Any]) -> VoiceSession:
        return VoiceSession(
            self.resolver,
            self.orchestrator,
            setup,
            framing=self.config.framing,
            greeting_timeout_s=self.config.session.greeting_timeout_sec,
        )

    async def start(self) -> None:
        await self.run_state_store.init()

    async def close(self) -> None:
        self.sweeper.stop()
        await self.resolver.close()
        await self.run_state_store.close()


def build_session_services(
    config: Optional[AppConfig] = None,
    executor: Optional[AgentExecutor] = None,
    resolver: Optional[SubjectResolver] = None,
    run_state_store: Optional[RunStateStore] = None,
) -> SessionServices:
    """Build the service graph from ``config``.

    Any collaborator can be passed in to replace the configured one.
    Without an executor the offline scripted executor is used.
    """
    config = config or settings
    store = run_state_store or create_run_state_store(config.persistence)
    resolver = resolver or create_resolver(config.identity)
    executor = executor or ScriptedExecutor()

    events = EventBus()
    events.subscribe(log_event)
    sessions = SessionManager(
        store,
        events=events,
        slow_operation_threshold_ms=config.persistence.slow_operation_threshold_ms,
    )
    locks = SubjectLocks(enabled=config.session.serialize_turns)
    options = TurnOptions(
        timeout_s=config.session.turn_timeout_sec,
        max_turns=config.session.max_agent_turns,
    )
    orchestrator = TurnOrchestrator(sessions, executor, locks=locks, default_options=options)
    approvals = ApprovalCoordinator(sessions, executor, locks=locks, default_options=options)
    sweeper = LifecycleSweeper(
        sessions,
        idle_max_age_ms=config.session.idle_max_age_ms,
        interval_s=config.session.sweep_interval_sec,
    )
    sms = SmsChannel(
        resolver,
        orchestrator,
        segment_limit=config.framing.sms_segment_limit,
        multipart_limit=config.framing.sms_multipart_limit,
    )
    logger.info(
        "Session services ready (store=%s, resolver=%s, serialize_turns=%s)",
        type(store).__name__, type(resolver).__name__, locks.enabled,
    )
    return SessionServices(
        config=config,
        resolver=resolver,
        run_state_store=store,
        sessions=sessions,
        orchestrator=orchestrator,
        approvals=approvals,
        sweeper=sweeper,
        sms=sms,
    )
