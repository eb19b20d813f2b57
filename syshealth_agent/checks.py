"""
Security posture checks.

Each check has one Checker subclass per platform. build_checkers() picks the
variants for the detected platform once at startup; every variant honors the
same run() -> CheckResult contract and degrades to "unknown" on any failure.
"""
import glob
import logging
import re
import shutil
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from .probes import ProbeOutput, run_command

logger = logging.getLogger(__name__)

OK = "ok"
ISSUE = "issue"
UNKNOWN = "unknown"
STATUSES = (OK, ISSUE, UNKNOWN)

CHECK_NAMES = ("disk_encryption", "os_update_status", "antivirus", "inactivity_sleep")

Runner = Callable[[Sequence[str], float], ProbeOutput]


@dataclass(frozen=True)
class CheckResult:
    status: str
    details: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.status not in STATUSES:
            raise ValueError(f"invalid check status: {self.status!r}")

    def to_dict(self) -> dict:
        return {"status": self.status, "details": dict(self.details)}


def unknown() -> CheckResult:
    return CheckResult(UNKNOWN, {})


class Checker:
    name = ""

    def __init__(self, runner: Runner = run_command):
        self.runner = runner

    def probe(self) -> CheckResult:
        raise NotImplementedError

    def run(self) -> CheckResult:
        """
        Runs the probe and classifies it. Never raises.
        """
        try:
            return self.probe()
        except Exception as e:
            logger.warning("Check %s failed: %s", self.name, e)
            return unknown()


# disk_encryption

class LinuxDiskEncryption(Checker):
    name = "disk_encryption"

    def probe(self):
        r = self.runner(["lsblk", "-o", "NAME,TYPE"], 5)
        if not r.ok:
            return unknown()
        types = [line.split()[-1] for line in r.output.splitlines() if line.strip()]
        encrypted = "crypt" in types
        return CheckResult(OK if encrypted else ISSUE, {"tool": "lsblk"})


class DarwinDiskEncryption(Checker):
    name = "disk_encryption"

    def probe(self):
        r = self.runner(["fdesetup", "status"], 6)
        if not r.ok:
            return unknown()
        on = "FileVault is On." in r.output
        return CheckResult(OK if on else ISSUE, {"tool": "fdesetup"})


class WindowsDiskEncryption(Checker):
    name = "disk_encryption"

    def probe(self):
        r = self.runner(["manage-bde", "-status"], 8)
        if not r.ok:
            return unknown()
        low = r.output.lower()
        if "percentage encrypted: 100%" in low:
            return CheckResult(OK, {"tool": "manage-bde"})
        if "conversion status" in low:
            return CheckResult(ISSUE, {"tool": "manage-bde"})
        return CheckResult(UNKNOWN, {"tool": "manage-bde"})


# os_update_status

APT_SUMMARY = re.compile(r"^(\d+) upgraded", re.MULTILINE)


class LinuxUpdateStatus(Checker):
    name = "os_update_status"

    def probe(self):
        if shutil.which("apt-get"):
            return self._apt()
        if shutil.which("dnf"):
            return self._dnf()
        logger.debug("No supported package manager found")
        return unknown()

    def _apt(self):
        r = self.runner(["apt-get", "-s", "-o", "Debug::NoLocking=true", "upgrade"], 15)
        if not r.ok:
            return unknown()
        m = APT_SUMMARY.search(r.output)
        summary = r.output[m.start():].splitlines()[0][:80] if m else ""
        up_to_date = m is not None and m.group(1) == "0"
        return CheckResult(OK if up_to_date else ISSUE, {"manager": "apt-get", "summary": summary})

    def _dnf(self):
        # dnf check-update exits 100 when updates are available
        r = self.runner(["dnf", "-q", "check-update"], 15)
        if r.returncode == 0:
            return CheckResult(OK, {"manager": "dnf", "updates": "none"})
        if r.returncode == 100:
            return CheckResult(ISSUE, {"manager": "dnf", "updates": "available"})
        return unknown()


class DarwinUpdateStatus(Checker):
    name = "os_update_status"

    def probe(self):
        r = self.runner(["softwareupdate", "-l"], 15)
        if not r.ok:
            return unknown()
        none = "No new software available." in r.output
        return CheckResult(OK if none else ISSUE, {"updates": "none" if none else "available"})


class WindowsUpdateStatus(Checker):
    name = "os_update_status"

    COMMAND = "(New-Object -ComObject Microsoft.Update.AutoUpdate).Results.LastSearchSuccessDate"

    def probe(self):
        r = self.runner(["powershell", "-NoProfile", "-Command", self.COMMAND], 12)
        if not r.ok:
            return unknown()
        last_search = r.output.strip()
        return CheckResult(OK if last_search else ISSUE, {"lastSearch": last_search[:64]})


# antivirus

AV_UNITS = re.compile(r"clamav|sophos|symantec|falcon|endpoint", re.IGNORECASE)


class LinuxAntivirus(Checker):
    name = "antivirus"

    def probe(self):
        r = self.runner(["systemctl", "list-unit-files", "--no-pager"], 6)
        if not r.ok:
            return unknown()
        found = [line.split()[0] for line in r.output.splitlines() if AV_UNITS.search(line)]
        if found:
            return CheckResult(OK, {"found": "yes", "units": ",".join(found)[:120]})
        return CheckResult(ISSUE, {"found": "no"})


class DarwinAntivirus(Checker):
    name = "antivirus"

    def probe(self):
        # XProtect ships with the OS
        return CheckResult(OK, {"engine": "XProtect"})


class WindowsAntivirus(Checker):
    name = "antivirus"

    COMMAND = "Get-MpComputerStatus | Select-Object -ExpandProperty RealTimeProtectionEnabled"

    def probe(self):
        r = self.runner(["powershell", "-NoProfile", "-Command", self.COMMAND], 8)
        if not r.ok:
            return unknown()
        on = "true" in r.output.lower()
        return CheckResult(OK if on else ISSUE, {"engine": "Defender"})


# inactivity_sleep

IDLE_ACTION = re.compile(r"^\s*IdleAction(Sec)?\s*=", re.MULTILINE)
PMSET_SLEEP = re.compile(r"\b(displaysleep|sleep)\s+(\d+)")
MAX_SLEEP_MINUTES = 10


class LinuxInactivitySleep(Checker):
    name = "inactivity_sleep"

    config_paths = ("/etc/systemd/logind.conf",)
    dropin_glob = "/etc/systemd/logind.conf.d/*.conf"

    def probe(self):
        paths = list(self.config_paths) + sorted(glob.glob(self.dropin_glob))
        read_any = False
        for path in paths:
            try:
                with open(path, "r") as f:
                    text = f.read()
            except OSError:
                continue
            read_any = True
            if IDLE_ACTION.search(text):
                return CheckResult(OK, {"logind": "configured"})
        if not read_any:
            return unknown()
        return CheckResult(ISSUE, {"logind": "default"})


class DarwinInactivitySleep(Checker):
    name = "inactivity_sleep"

    def probe(self):
        r = self.runner(["pmset", "-g"], 6)
        if not r.ok:
            return unknown()
        matches = PMSET_SLEEP.findall(r.output)
        parsed = " ".join(f"{key} {value}" for key, value in matches)
        # 0 means the timer is disabled
        minutes = [int(value) for _, value in matches]
        enabled = [m for m in minutes if m > 0]
        if any(m <= MAX_SLEEP_MINUTES for m in enabled):
            return CheckResult(OK, {"parsed": parsed})
        if minutes:
            return CheckResult(ISSUE, {"parsed": parsed})
        return CheckResult(UNKNOWN, {"parsed": parsed})


class WindowsInactivitySleep(Checker):
    name = "inactivity_sleep"

    COMMAND = "(powercfg -q | Select-String -Pattern 'VIDEOIDLE|STANDBYIDLE').Line"

    def probe(self):
        # Raw values are reported for review; no policy is applied yet.
        r = self.runner(["powershell", "-NoProfile", "-Command", self.COMMAND], 8)
        return CheckResult(UNKNOWN, {"raw": r.output[:120]})


CHECKERS = {
    "linux": (LinuxDiskEncryption, LinuxUpdateStatus, LinuxAntivirus, LinuxInactivitySleep),
    "darwin": (DarwinDiskEncryption, DarwinUpdateStatus, DarwinAntivirus, DarwinInactivitySleep),
    "windows": (WindowsDiskEncryption, WindowsUpdateStatus, WindowsAntivirus, WindowsInactivitySleep),
}


class UnsupportedChecker(Checker):
    def __init__(self, name: str, runner: Runner = run_command):
        super().__init__(runner)
        self.name = name

    def probe(self):
        return unknown()


def build_checkers(platform_name: str, runner: Runner = run_command) -> List[Checker]:
    """
    Returns one checker per check name for the given platform class.
    Platforms without variants get checkers that always report unknown.
    """
    classes = CHECKERS.get(platform_name)
    if classes is None:
        logger.warning("Unsupported platform %r, all checks will report unknown", platform_name)
        return [UnsupportedChecker(name, runner) for name in CHECK_NAMES]
    return [cls(runner) for cls in classes]
