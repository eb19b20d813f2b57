import logging
import platform
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeOutput:
    ok: bool
    output: str
    returncode: Optional[int] = None


def detect_platform() -> str:
    """
    Maps the running OS onto one of "linux", "darwin" or "windows".
    """
    system = platform.system()
    if system == "Windows":
        return "windows"
    if system == "Darwin":
        return "darwin"
    return "linux"


def run_command(args: Sequence[str], timeout: float) -> ProbeOutput:
    """
    Runs an external command with a hard timeout and never raises.

    ok is True only on a zero exit status. output is stdout followed by stderr.
    On timeout subprocess.run kills and reaps the child before returning control.
    """
    kwargs = {}
    if platform.system() == "Windows":
        kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
    try:
        result = subprocess.run(
            list(args),
            capture_output=True, text=True, check=False, timeout=timeout, **kwargs
        )
    except subprocess.TimeoutExpired:
        logger.debug("Probe %s timed out after %ss", args[0], timeout)
        return ProbeOutput(ok=False, output="")
    except (OSError, ValueError) as e:
        logger.debug("Probe %s could not be started: %s", args[0], e)
        return ProbeOutput(ok=False, output="")

    output = (result.stdout or "") + (result.stderr or "")
    if result.returncode != 0:
        logger.debug("Probe %s exited with %s", args[0], result.returncode)
    return ProbeOutput(ok=result.returncode == 0, output=output, returncode=result.returncode)
