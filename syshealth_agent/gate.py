import enum
from dataclasses import dataclass

from .report import core_hash
from .state import ChangeState


class Outcome(str, enum.Enum):
    SUPPRESSED = "suppressed"
    CHANGE = "change"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    core_hash: str
    heartbeat: bool = False

    @property
    def transmit(self) -> bool:
        return self.outcome is not Outcome.SUPPRESSED


def decide(report: dict, state: ChangeState, heartbeat_minutes: float, now_ms: int) -> Decision:
    """
    Decides whether this cycle's report goes out, and whether it is a heartbeat.

    A changed core body is always sent as a change event, even when a heartbeat
    is also overdue. An unchanged body is only sent once the heartbeat window
    has elapsed since the last successful transmission.
    """
    current = core_hash(report)
    changed = current != state.last_core_hash
    heartbeat_due = (now_ms - state.last_sent_at) > heartbeat_minutes * 60_000

    if changed:
        return Decision(Outcome.CHANGE, current, heartbeat=False)
    if heartbeat_due:
        return Decision(Outcome.HEARTBEAT, current, heartbeat=True)
    return Decision(Outcome.SUPPRESSED, current)
