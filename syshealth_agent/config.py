import math
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _get_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(number) or number < 0:
        raise ValueError(f"{name} must be a finite non-negative number, got {value!r}")
    return number


@dataclass(frozen=True)
class AgentConfig:
    """
    Agent settings, read once at process start and passed to every component.
    """
    server_url: str = "http://localhost:8080"
    ingest_secret: str = "change-me"
    interval_minutes: float = 20
    jitter_minutes: float = 5
    heartbeat_minutes: float = 60
    initial_delay_seconds: float = 120
    request_timeout_seconds: float = 10
    state_dir: Path = Path.home() / ".syshealth-agent"

    @property
    def ingest_url(self) -> str:
        return self.server_url.rstrip("/") + "/v1/ingest"


def load_config() -> AgentConfig:
    """
    Builds the AgentConfig from the environment (and a local .env file, if any).
    """
    load_dotenv()
    defaults = AgentConfig()
    return AgentConfig(
        server_url=_get_str("SERVER_URL", defaults.server_url),
        ingest_secret=_get_str("INGEST_SECRET", defaults.ingest_secret),
        interval_minutes=_get_float("INTERVAL_MINUTES", defaults.interval_minutes),
        jitter_minutes=_get_float("JITTER_MINUTES", defaults.jitter_minutes),
        heartbeat_minutes=_get_float("HEARTBEAT_MINUTES", defaults.heartbeat_minutes),
        initial_delay_seconds=_get_float("INITIAL_DELAY_SECONDS", defaults.initial_delay_seconds),
        request_timeout_seconds=_get_float("REQUEST_TIMEOUT_SECONDS", defaults.request_timeout_seconds),
        state_dir=Path(_get_str("STATE_DIR", str(defaults.state_dir))).expanduser(),
    )
