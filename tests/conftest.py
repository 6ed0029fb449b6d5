"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from omnichannel.agents.executor import ExecutorResult
from omnichannel.agents.scripted import ScriptedExecutor
from omnichannel.conversation.approvals import ApprovalCoordinator
from omnichannel.conversation.events import EventBus
from omnichannel.conversation.locks import SubjectLocks
from omnichannel.conversation.orchestrator import TurnOptions, TurnOrchestrator
from omnichannel.conversation.session_manager import SessionManager
from omnichannel.identity.phone_resolver import PhoneSubjectResolver
from omnichannel.persistence.file_store import FileRunStateStore
from omnichannel.persistence.memory_store import InMemoryRunStateStore
from omnichannel.schemas.context_schema import Role, make_item
from omnichannel.schemas.run_state_schema import PendingApproval

SUBJECT = "phone_+14155550100"


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeNow:
    """Datetime clock for context timestamps."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2025, 3, 15, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> None:
        self.current += timedelta(**kwargs)


class RecordingListener:
    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_now():
    return FakeNow()


@pytest.fixture
def memory_store(clock):
    return InMemoryRunStateStore(max_age_ms=60_000, clock=clock)


@pytest.fixture
def file_store(tmp_path, clock):
    return FileRunStateStore(data_dir=str(tmp_path / "states"), max_age_ms=60_000, clock=clock)


@pytest.fixture
def phone_resolver(tmp_path):
    return PhoneSubjectResolver(map_file=str(tmp_path / "subject-map.json"))


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def sessions(memory_store, fake_now, listener):
    events = EventBus()
    events.subscribe(listener)
    return SessionManager(memory_store, events=events, now=fake_now)


@pytest.fixture
def executor():
    return ScriptedExecutor()


@pytest.fixture
def locks():
    return SubjectLocks()


@pytest.fixture
def orchestrator(sessions, executor, locks):
    return TurnOrchestrator(sessions, executor, locks=locks, default_options=make_options())


@pytest.fixture
def approvals(sessions, executor, locks):
    return ApprovalCoordinator(sessions, executor, locks=locks, default_options=make_options())


def make_options(timeout_s: Optional[float] = 5.0, max_turns: int = 10, **kwargs) -> TurnOptions:
    """Helper to create TurnOptions with test-friendly budgets."""
    return TurnOptions(timeout_s=timeout_s, max_turns=max_turns, **kwargs)


def make_pending(tool_call_id: str = "call_1", tool_name: str = "process_refund") -> PendingApproval:
    return PendingApproval(tool_call_id=tool_call_id, tool_name=tool_name)


def make_result(
    text: Optional[str] = "Done.",
    agent: str = "customer-support",
    pending: Optional[list[PendingApproval]] = None,
    state: Optional[str] = None,
) -> ExecutorResult:
    """Helper to create an ExecutorResult; a text result gets one assistant item."""
    return ExecutorResult(
        final_output=text,
        new_items=[make_item(Role.ASSISTANT, text)] if text else [],
        pending_approvals=pending or [],
        serialized_state=state,
        current_agent=agent,
    )
