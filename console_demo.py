"""
Offline console demo: one customer, two channels, one conversation.

Runs the real session manager (subject resolution, context and run-state
stores, turn orchestration, approvals, SMS and voice framing) against the
scripted executor. No LLM, no telephony, no network calls.

Usage:
    python console_demo.py
    python console_demo.py --scenario cross-channel
    python console_demo.py --scenario approval
    python console_demo.py --scenario segments
"""

import argparse
import asyncio
import dataclasses
import tempfile
from pathlib import Path
from typing import AsyncIterator, Optional

from omnichannel.bootstrap import SessionServices, build_session_services
from omnichannel.channels.framing import VoiceChunk, segment_sms
from omnichannel.config import PersistenceConfig, settings
from omnichannel.identity.phone_resolver import PhoneSubjectResolver

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

SMS_PHONE = "(415) 555-0100"
VOICE_PHONE = "+1 415-555-0100"

LONG_REPLY = (
    "Here is a summary of our return policy. Items can be returned within 30 days "
    "of delivery as long as they are unused and in their original packaging. "
    "Refunds are issued to the original payment method within 5 to 7 business days "
    "after we receive the item. Shipping costs are non-refundable unless the item "
    "arrived damaged or we sent the wrong product. For exchanges, place a new order "
    "and return the original item for a refund."
)


class ConsoleSession:
    """Drives the session manager from the terminal."""

    MAX_INPUT_LENGTH = 500

    def __init__(self, services: SessionServices, phone: str = SMS_PHONE) -> None:
        self.services = services
        self.phone = phone
        self.pending: list[str] = []
        self.subject_id: Optional[str] = None

    def agent_say(self, channel: str, text: str) -> None:
        print(f"{GREEN}{BOLD}[{channel}]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  OMNICHANNEL SESSIONS - {title}{RESET}")
        print(f"{BOLD}  Service: {settings.service_name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    # ------------------------------------------------------------------ #
    # Channels
    # ------------------------------------------------------------------ #

    async def send_sms(self, body: str, phone: Optional[str] = None) -> None:
        print(f"\n{BLUE}[SMS from {phone or self.phone}] {RESET}{body}")
        reply = await self.services.sms.process_request(
            {"From": phone or self.phone, "To": "+18005550199", "Body": body}
        )
        self.subject_id = reply.subject_id or self.subject_id
        for segment in self.services.sms.frame(reply):
            self.agent_say("SMS", segment)
        self._track_approvals(reply.result)
        if reply.session_ended:
            self.system_log("Session ended by goodbye")

    async def voice_call(self, prompts: list[str], phone: Optional[str] = None) -> None:
        setup = {"from": phone or VOICE_PHONE, "to": "+18005550199", "callSid": "CA-demo"}
        session = self.services.voice_session(setup)
        print(f"\n{BLUE}[Call from {setup['from']}]{RESET}")
        try:
            await self._speak(session.start())
            self.system_log(f"Caller resolved to {session.subject_id}")
            for text in prompts:
                print(f"{BLUE}[Caller] {RESET}{text}")
                await self._speak(session.prompt(text))
        finally:
            await session.close()
            self.system_log("Call closed, session ended")

    async def _speak(self, chunks: AsyncIterator[VoiceChunk]) -> None:
        parts = []
        async for chunk in chunks:
            if chunk.last:
                break
            parts.append(chunk.text)
        self.agent_say("Voice", " | ".join(parts))

    # ------------------------------------------------------------------ #
    # Approvals
    # ------------------------------------------------------------------ #

    def _track_approvals(self, result) -> None:
        if result is not None and result.awaiting_approvals:
            self.pending = [p.tool_call_id for p in result.pending_approvals]
            for p in result.pending_approvals:
                print(f"{YELLOW}  [APPROVAL] {p.tool_name} {p.arguments} ({p.tool_call_id}){RESET}")

    async def decide(self, approved: bool) -> None:
        if not self.subject_id:
            self.system_log("No subject yet")
            return
        payload = {
            "subjectId": self.subject_id,
            "decisions": [{"toolCallId": cid, "approved": approved} for cid in self.pending],
        }
        verdict = "approved" if approved else "rejected"
        self.system_log(f"Operator {verdict} {self.pending}")
        try:
            result = await self.services.approvals.handle_submission(payload)
        except Exception as exc:
            print(f"{RED}  {exc}{RESET}")
            return
        self.pending = []
        self.agent_say("SMS", result.response or "")

    def show_session(self) -> None:
        if not self.subject_id:
            return
        info = self.services.sessions.get_session_info(self.subject_id)
        if info is None:
            self.system_log(f"{self.subject_id}: no active session")
            return
        self.system_log(
            f"{info.subject_id}: {info.message_count} messages, "
            f"escalation level {info.escalation_level}"
        )

    # ------------------------------------------------------------------ #
    # Scenarios
    # ------------------------------------------------------------------ #

    async def run_scenario(self, scenario: str) -> None:
        self.banner(f"Scenario: {scenario}")
        if scenario == "cross-channel":
            await self.send_sms("Hi, where is my order 1234567?")
            self.show_session()
            await self.voice_call(["Any update on that order?", "Can I talk to a manager?"])
        elif scenario == "approval":
            await self.send_sms("I need a refund for order 7654321")
            await self.decide(approved=True)
            await self.send_sms("Actually, refund order 7654321 again please")
            await self.decide(approved=False)
            await self.decide(approved=True)
            self.show_session()
        elif scenario == "segments":
            for segment in segment_sms(LONG_REPLY):
                self.agent_say("SMS", segment)
        else:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return
        print(f"\n{BOLD}  Scenario '{scenario}' complete.{RESET}")

    async def run(self) -> None:
        self.banner("Console Demo")
        print(f"{DIM}  Texting as {self.phone}. Commands: approve, reject, call, info, quit{RESET}")
        while True:
            user_input = (await asyncio.to_thread(input, f"\n{BLUE}[You] {RESET}")).strip()
            if not user_input:
                continue
            command = user_input.lower()
            if command in ("quit", "exit", "q"):
                print(f"\n{DIM}Demo ended.{RESET}")
                return
            if len(user_input) > self.MAX_INPUT_LENGTH:
                self.system_log("Message too long")
                continue
            if command == "approve":
                await self.decide(approved=True)
            elif command == "reject":
                await self.decide(approved=False)
            elif command == "info":
                self.show_session()
            elif command.startswith("call"):
                prompt = user_input[4:].strip() or "Hello?"
                await self.voice_call([prompt])
            else:
                await self.send_sms(user_input)


async def run_demo(scenario: Optional[str], phone: str) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        config = dataclasses.replace(
            settings,
            persistence=dataclasses.replace(PersistenceConfig(), adapter="memory"),
        )
        resolver = PhoneSubjectResolver(map_file=str(Path(tmp) / "subject-map.json"))
        services = build_session_services(config, resolver=resolver)
        await services.start()
        session = ConsoleSession(services, phone=phone)
        try:
            if scenario:
                await session.run_scenario(scenario)
            else:
                await session.run()
        finally:
            await services.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=["cross-channel", "approval", "segments"],
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    parser.add_argument("--phone", default=SMS_PHONE, help="Phone number to text from")
    args = parser.parse_args()
    asyncio.run(run_demo(args.scenario, args.phone))


if __name__ == "__main__":
    main()
