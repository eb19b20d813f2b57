import hashlib
import hmac
import json
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient

from syshealth_agent.checks import Checker, CheckResult
from syshealth_agent.probes import ProbeOutput
from syshealth_server.config import Settings
from syshealth_server.main import create_app

SECRET = "test-secret"


class FakeRunner:
    """Answers probe commands by their executable name."""

    def __init__(self, outputs=None):
        self.outputs = outputs or {}
        self.calls = []

    def __call__(self, args, timeout):
        self.calls.append((list(args), timeout))
        return self.outputs.get(args[0], ProbeOutput(ok=False, output=""))


class StaticChecker(Checker):
    def __init__(self, name, status, details=None):
        super().__init__()
        self.name = name
        self.result = CheckResult(status, details or {})

    def probe(self):
        return self.result


class SimulatedClock:
    def __init__(self, now_ms=1_700_000_000_000):
        self.now_ms = now_ms

    def advance(self, minutes):
        self.now_ms += int(minutes * 60_000)

    def __call__(self):
        return self.now_ms


class ClientSession:
    """Lets SignedTransport post into a TestClient instead of the network."""

    def __init__(self, client):
        self.client = client
        self.requests = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.requests.append({"url": url, "body": data, "headers": headers})
        return self.client.post(urlsplit(url).path, content=data, headers=headers)


def signed_post(client, body: bytes, secret: str = SECRET, machine_id=None):
    headers = {
        "Content-Type": "application/json",
        "X-Signature": hmac.new(secret.encode(), body, hashlib.sha256).hexdigest(),
    }
    if machine_id:
        headers["X-Machine-Id"] = machine_id
    return client.post("/v1/ingest", content=body, headers=headers)


def make_report(machine_id="host-a|linux|alice", hostname="host-a", os_name="linux", statuses=None, **extra):
    statuses = statuses or {}
    report = {
        "machine_id": machine_id,
        "os": os_name,
        "arch": "x86_64",
        "hostname": hostname,
        "agent_version": "1.0.0",
        "timestamp": "2024-05-01T10:00:00.000+00:00",
        "checks": {
            name: {"status": statuses.get(name, "unknown"), "details": {}}
            for name in ("disk_encryption", "os_update_status", "antivirus", "inactivity_sleep")
        },
    }
    report.update(extra)
    return report


def encode(report) -> bytes:
    return json.dumps(report).encode("utf-8")


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'syshealth.db'}", ingest_secret=SECRET)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as client:
        yield client
