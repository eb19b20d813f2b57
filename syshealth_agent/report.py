import getpass
import hashlib
import json
import logging
import os
import platform
import socket
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from . import __version__
from .checks import Checker, CheckResult, unknown

logger = logging.getLogger(__name__)


def get_username() -> str:
    try:
        return getpass.getuser()
    except (OSError, KeyError):
        return os.environ.get("USER") or os.environ.get("USERNAME") or "user"


def get_machine_id(platform_name: str, hostname: Optional[str] = None, user: Optional[str] = None) -> str:
    """
    Builds the stable machine identity from hostname, platform class and local user.
    """
    hostname = hostname or socket.gethostname()
    user = user or get_username()
    return f"{hostname}|{platform_name}|{user}"


def run_checkers(checkers: Sequence[Checker]) -> Dict[str, CheckResult]:
    """
    Runs all checkers concurrently, so a cycle takes as long as the slowest probe.
    """
    if not checkers:
        return {}
    results = {}
    with ThreadPoolExecutor(max_workers=len(checkers)) as pool:
        futures = {checker.name: pool.submit(checker.run) for checker in checkers}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as e:
                # Checker.run() already guards its probe; this only covers broken checkers.
                logger.warning("Check %s crashed: %s", name, e)
                results[name] = unknown()
    return results


def collect_report(platform_name: str, checkers: Sequence[Checker]) -> dict:
    """
    Collects one report for this machine: identity, versioning fields,
    a UTC timestamp and the result of every check.
    """
    hostname = socket.gethostname()
    results = run_checkers(checkers)
    return {
        "machine_id": get_machine_id(platform_name, hostname=hostname),
        "os": platform_name,
        "arch": platform.machine().lower(),
        "hostname": hostname,
        "agent_version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        "checks": {name: result.to_dict() for name, result in results.items()},
    }


def core_body(report: dict) -> dict:
    """
    The report without its timestamp (and without the transport-only heartbeat flag).
    """
    return {k: v for k, v in report.items() if k not in ("timestamp", "heartbeat")}


def core_hash(report: dict) -> str:
    core_json = json.dumps(core_body(report), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(core_json.encode("utf-8")).hexdigest()
