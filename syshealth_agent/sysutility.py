"""
sysutility.py - agent entry point.

One cycle collects a report, asks the gate whether it must go out, sends it
signed and, only after the collector accepted it, records the new change state.
The scheduler repeats cycles on a jittered interval, one at a time.
"""
import argparse
import enum
import functools
import json
import logging
import random
import threading
import time
from typing import Callable, Optional, Sequence

from . import __version__
from .checks import Checker, build_checkers
from .config import AgentConfig, load_config
from .gate import Outcome, decide
from .probes import detect_platform
from .report import collect_report
from .state import StateStore
from .transport import SignedTransport

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def run_cycle(
    config: AgentConfig,
    platform_name: str,
    checkers: Sequence[Checker],
    transport: SignedTransport,
    store: StateStore,
    clock: Callable[[], int] = now_ms,
) -> Outcome:
    """
    Runs one collect / gate / transmit cycle.

    Transport errors propagate and leave the stored state untouched, so the
    next cycle reaches the same decision again.
    """
    report = collect_report(platform_name, checkers)
    state = store.load()
    decision = decide(report, state, config.heartbeat_minutes, clock())

    if not decision.transmit:
        logger.info("Report unchanged and heartbeat not due, nothing sent")
        return decision.outcome

    logger.info("Sending %s for %s", decision.outcome.value, report["machine_id"])
    transport.send(report, decision.heartbeat)
    store.save(decision.core_hash, clock())
    logger.info("Report accepted, state updated")
    return decision.outcome


class Phase(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class Scheduler:
    """
    Runs cycles forever: a random initial delay, then one cycle followed by a
    wait of interval + random jitter. Cycles never overlap.
    """

    def __init__(
        self,
        config: AgentConfig,
        cycle: Callable[[], object],
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.cycle = cycle
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.phase = Phase.IDLE
        self._lock = threading.Lock()

    def initial_delay(self) -> float:
        return self.rng.uniform(0, self.config.initial_delay_seconds)

    def next_delay(self) -> float:
        minutes = self.config.interval_minutes + self.rng.uniform(0, self.config.jitter_minutes)
        return minutes * 60

    def run_once(self) -> bool:
        """
        Runs a single cycle, logging and swallowing its failure.
        Returns False if another cycle was already in flight.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Previous cycle still running, skipping")
            return False
        self.phase = Phase.RUNNING
        try:
            self.cycle()
        except Exception:
            logger.exception("Cycle failed")
        finally:
            self.phase = Phase.IDLE
            self._lock.release()
        return True

    def run_forever(self, initial_delay: bool = True, max_cycles: Optional[int] = None) -> None:
        if initial_delay:
            delay = self.initial_delay()
            logger.info("Starting in %.0f seconds", delay)
            self.sleep(delay)

        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            self.run_once()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            delay = self.next_delay()
            logger.info("Next check in %.1f minutes", delay / 60)
            self.sleep(delay)


def main(argv=None):
    parser = argparse.ArgumentParser(description="SysHealth agent - audits this machine and reports to the collector.")
    parser.add_argument("--once", action="store_true", help="Collect and print one report without sending it or touching state.")
    parser.add_argument("--no-delay", action="store_true", help="Skip the random startup delay.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config()
    platform_name = detect_platform()
    checkers = build_checkers(platform_name)

    if args.once:
        report = collect_report(platform_name, checkers)
        print(json.dumps(report, indent=2))
        return

    cycle = functools.partial(
        run_cycle,
        config,
        platform_name,
        checkers,
        SignedTransport(config),
        StateStore(config.state_dir),
    )
    scheduler = Scheduler(config, cycle)
    logger.info("SysHealth agent %s started on %s, reporting to %s", __version__, platform_name, config.server_url)
    try:
        scheduler.run_forever(initial_delay=not args.no_delay)
    except KeyboardInterrupt:
        logger.info("Agent stopped by user")


if __name__ == "__main__":
    main()
