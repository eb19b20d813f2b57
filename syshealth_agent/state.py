"""
Local change state.

Two scalar files in the per-user state directory:
- last_hash: core hash of the last report the collector accepted
- last_sent_at: epoch millis of that transmission

Unreadable or missing files read as "no prior state" so the agent errs on the
side of sending.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

HASH_FILE = "last_hash"
LAST_SENT_FILE = "last_sent_at"


@dataclass(frozen=True)
class ChangeState:
    last_core_hash: Optional[str] = None
    last_sent_at: int = 0


class StateStore:
    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    @property
    def hash_path(self) -> Path:
        return self.state_dir / HASH_FILE

    @property
    def last_sent_path(self) -> Path:
        return self.state_dir / LAST_SENT_FILE

    def load(self) -> ChangeState:
        return ChangeState(last_core_hash=self._read_hash(), last_sent_at=self._read_last_sent())

    def _read_hash(self) -> Optional[str]:
        try:
            value = self.hash_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read %s, treating as no prior state: %s", self.hash_path, e)
            return None
        return value or None

    def _read_last_sent(self) -> int:
        try:
            return int(self.last_sent_path.read_text(encoding="utf-8").strip())
        except FileNotFoundError:
            return 0
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Could not read %s, treating as never sent: %s", self.last_sent_path, e)
            return 0

    def save(self, core_hash: str, sent_at: int) -> None:
        """
        Overwrites both values. Raises OSError if the directory is not writable.
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.hash_path.write_text(core_hash, encoding="utf-8")
        self.last_sent_path.write_text(str(int(sent_at)), encoding="utf-8")
