import hashlib
import hmac
import json
import logging
from typing import Optional
from urllib.parse import quote

import requests

from .config import AgentConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
MACHINE_ID_HEADER = "X-Machine-Id"


class TransportError(Exception):
    """
    The report did not reach the collector, or the collector refused it.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransportTimeout(TransportError):
    pass


def encode_payload(report: dict, heartbeat: bool) -> bytes:
    """
    Serializes the report plus heartbeat flag to the exact bytes that get signed and sent.
    """
    payload = dict(report, heartbeat=bool(heartbeat))
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class SignedTransport:
    def __init__(self, config: AgentConfig, session=None):
        self.config = config
        self.session = session if session is not None else requests.Session()

    def send(self, report: dict, heartbeat: bool) -> None:
        """
        POSTs the signed report to the collector. Returns only on a 2xx response.
        """
        body = encode_payload(report, heartbeat)
        headers = {
            "Content-Type": "application/json",
            # Header values must be latin-1; the server unquotes before comparing.
            MACHINE_ID_HEADER: quote(report["machine_id"], safe=""),
            SIGNATURE_HEADER: sign(self.config.ingest_secret, body),
        }
        try:
            response = self.session.post(
                self.config.ingest_url,
                data=body,
                headers=headers,
                timeout=self.config.request_timeout_seconds,
            )
        except requests.exceptions.Timeout as e:
            raise TransportTimeout(f"ingest timed out after {self.config.request_timeout_seconds}s") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"ingest request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"ingest failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.debug("Ingest accepted with status %s", response.status_code)
