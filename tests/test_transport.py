import hashlib
import hmac
import json
from urllib.parse import quote

import pytest
import requests

from syshealth_agent.config import AgentConfig
from syshealth_agent.transport import (
    SignedTransport,
    TransportError,
    TransportTimeout,
    encode_payload,
    sign,
)

from conftest import make_report

CONFIG = AgentConfig(server_url="http://collector.test:8080/", ingest_secret="shh")


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(200, '{"ok":true}')
        self.error = error
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def test_encode_payload_is_canonical_and_carries_heartbeat():
    report = make_report()
    body = encode_payload(report, heartbeat=True)
    assert json.loads(body)["heartbeat"] is True
    assert body == encode_payload(dict(reversed(list(report.items()))), heartbeat=True)
    assert b", " not in body and b": " not in body
    assert "heartbeat" not in report


def test_sign_is_hex_hmac_sha256():
    body = b'{"a":1}'
    assert sign("k", body) == hmac.new(b"k", body, hashlib.sha256).hexdigest()


def test_send_posts_signed_body_with_identity_headers():
    session = FakeSession()
    report = make_report()
    SignedTransport(CONFIG, session=session).send(report, heartbeat=False)

    call = session.calls[0]
    assert call["url"] == "http://collector.test:8080/v1/ingest"
    assert call["timeout"] == 10
    assert call["headers"]["X-Machine-Id"] == quote(report["machine_id"], safe="")
    assert call["headers"]["X-Signature"] == sign("shh", call["data"])
    assert call["headers"]["Content-Type"] == "application/json"
    assert json.loads(call["data"])["heartbeat"] is False


@pytest.mark.parametrize("status_code", [400, 401, 404, 500, 503])
def test_non_2xx_raises_with_status(status_code):
    session = FakeSession(FakeResponse(status_code, "nope"))
    with pytest.raises(TransportError) as excinfo:
        SignedTransport(CONFIG, session=session).send(make_report(), heartbeat=False)
    assert excinfo.value.status_code == status_code


def test_accepts_any_2xx():
    session = FakeSession(FakeResponse(204))
    SignedTransport(CONFIG, session=session).send(make_report(), heartbeat=True)


def test_timeout_raises_explicit_timeout_error():
    session = FakeSession(error=requests.exceptions.ReadTimeout("slow"))
    with pytest.raises(TransportTimeout):
        SignedTransport(CONFIG, session=session).send(make_report(), heartbeat=False)


def test_connection_error_raises_transport_error():
    session = FakeSession(error=requests.exceptions.ConnectionError("refused"))
    with pytest.raises(TransportError) as excinfo:
        SignedTransport(CONFIG, session=session).send(make_report(), heartbeat=False)
    assert not isinstance(excinfo.value, TransportTimeout)
    assert excinfo.value.status_code is None
