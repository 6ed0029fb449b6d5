"""
Command-line entry point.

Usage:
    Console demo:   python main.py console [--scenario approval]
    One sweep:      python main.py sweep [--max-age-ms 3600000]
    Sweep forever:  python main.py sweeper
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from omnichannel.bootstrap import build_session_services
from omnichannel.config import settings

logger = logging.getLogger(__name__)


async def _sweep_once(max_age_ms: Optional[int]) -> int:
    """Purge expired run-state records from the configured store."""
    services = build_session_services(settings)
    await services.start()
    try:
        if max_age_ms is not None:
            services.sweeper.run_state_max_age_ms = max_age_ms
        report = await services.sweeper.sweep()
    finally:
        await services.close()
    print(f"Removed {report.removed_run_states} expired run-state record(s)")
    return report.removed_run_states


async def _sweep_forever() -> None:
    services = build_session_services(settings)
    await services.start()
    try:
        await services.sweeper.run_forever()
    finally:
        await services.close()


def _run_console_mode(scenario: Optional[str]) -> None:
    """Start the offline console demo (no API keys required)."""
    from console_demo import run_demo

    asyncio.run(run_demo(scenario, phone="(415) 555-0100"))


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Omnichannel conversation session manager")
    commands = parser.add_subparsers(dest="command", required=True)

    console = commands.add_parser("console", help="Run the offline console demo")
    console.add_argument("--scenario", choices=["cross-channel", "approval", "segments"])

    sweep = commands.add_parser("sweep", help="Purge expired run-state records once")
    sweep.add_argument("--max-age-ms", type=int, default=None,
                       help=f"Override STATE_MAX_AGE (default {settings.persistence.max_age_ms})")

    commands.add_parser("sweeper", help="Run the periodic lifecycle sweeper")

    args = parser.parse_args(argv)
    if args.command == "console":
        _run_console_mode(args.scenario)
    elif args.command == "sweep":
        asyncio.run(_sweep_once(args.max_age_ms))
    else:
        try:
            asyncio.run(_sweep_forever())
        except KeyboardInterrupt:
            logger.info("Sweeper interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
