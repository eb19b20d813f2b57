from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Depends, Request, status, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from typing import List, Optional
from datetime import datetime, timezone
import csv
import hmac
import io
import json
import logging
import sqlite3
from urllib.parse import unquote

from . import __version__
from .config import Settings, load_settings
from .database import get_db_connection, create_tables, upsert_machine, list_machines, get_machine
from .models import IngestReport, Machine
from .security import verify_signature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
MACHINE_ID_HEADER = "X-Machine-Id"

CHECK_COLUMNS = ["disk_encryption", "os_update_status", "antivirus", "inactivity_sleep"]
CSV_HEADERS = ["machine_id", "os", "arch", "hostname", "agent_version", "last_seen", "heartbeat"] + CHECK_COLUMNS


def normalize_last_seen(timestamp: Optional[str]) -> str:
    """
    Converts the report timestamp to ISO-8601 UTC, falling back to the receive time.
    """
    dt = None
    if timestamp:
        try:
            dt = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparsable report timestamp %r, using receive time", timestamp)
    if dt is None:
        dt = datetime.now(timezone.utc)
    elif dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def build_record(report: IngestReport, payload: dict) -> dict:
    return {
        "machine_id": report.machine_id,
        "os": report.os,
        "arch": report.arch,
        "hostname": report.hostname,
        "agent_version": report.agent_version,
        "last_seen": normalize_last_seen(report.timestamp),
        "heartbeat": bool(report.heartbeat),
        "last_payload": payload,
    }


async def read_limited_body(request: Request, limit: int) -> bytes:
    """
    Reads the raw body, refusing with 413 as soon as it exceeds limit bytes.
    """
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            declared_length = int(declared)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid content-length")
        if declared_length > limit:
            raise HTTPException(status_code=413, detail="payload too large")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise HTTPException(status_code=413, detail="payload too large")
    return bytes(body)


def matches_filters(machine: dict, os_name: Optional[str], check_status: Optional[str], q: Optional[str]) -> bool:
    if os_name and machine["os"] != os_name:
        return False
    if q:
        hostname = (machine["hostname"] or "").lower()
        if q.lower() not in hostname and q not in machine["machine_id"]:
            return False
    if check_status:
        checks = machine["checks"] or {}
        if not any((c or {}).get("status") == check_status for c in checks.values()):
            return False
    return True


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_tables(settings.database_path)
        yield

    app = FastAPI(title="SysHealth collector", version=__version__, lifespan=lifespan)
    app.state.settings = settings

    # Security
    security = HTTPBearer(auto_error=False)

    def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
        if not settings.api_token:
            return None
        if credentials is None or not hmac.compare_digest(credentials.credentials, settings.api_token):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return credentials.credentials

    @app.get("/")
    def read_root():
        return {"message": "SysHealth collector", "version": __version__}

    @app.post("/v1/ingest")
    async def ingest(request: Request):
        # The signature covers the exact bytes sent, so nothing is parsed before it is checked.
        raw = await read_limited_body(request, settings.max_body_bytes)

        if not verify_signature(settings.ingest_secret, raw, request.headers.get(SIGNATURE_HEADER)):
            logger.warning("Rejected ingest from %s: invalid signature", request.headers.get(MACHINE_ID_HEADER))
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature")

        try:
            data = json.loads(raw)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid json")
        if not isinstance(data, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid json")

        try:
            report = IngestReport.model_validate(data)
        except ValidationError as e:
            logger.warning("Rejected ingest from %s: %d validation errors", data.get("machine_id"), e.error_count())
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="missing fields")

        header_id = unquote(request.headers.get(MACHINE_ID_HEADER, ""))
        if header_id and header_id != report.machine_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="machine id mismatch")

        record = build_record(report, data)

        def store():
            conn = get_db_connection(settings.database_path)
            try:
                upsert_machine(conn, record)
            finally:
                conn.close()

        try:
            await run_in_threadpool(store)
        except sqlite3.Error as e:
            logger.error("Could not store report for %s: %s", report.machine_id, e)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error")

        logger.info("Stored %s report for %s", "heartbeat" if report.heartbeat else "change", report.machine_id)
        return {"ok": True}

    @app.get("/v1/machines", response_model=List[Machine])
    def read_machines(
        os: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
        q: Optional[str] = Query(None),
        token: Optional[str] = Depends(verify_token),
    ):
        conn = get_db_connection(settings.database_path)
        try:
            machines = list_machines(conn)
        finally:
            conn.close()
        return [m for m in machines if matches_filters(m, os, status, q)]

    @app.get("/v1/machines/{machine_id}", response_model=Machine)
    def read_machine(machine_id: str, token: Optional[str] = Depends(verify_token)):
        conn = get_db_connection(settings.database_path)
        try:
            machine = get_machine(conn, machine_id)
        finally:
            conn.close()
        if machine is None:
            raise HTTPException(status_code=404, detail="Machine not found")
        return machine

    @app.get("/v1/export.csv")
    def get_export_csv(token: Optional[str] = Depends(verify_token)):
        conn = get_db_connection(settings.database_path)
        try:
            machines = list_machines(conn)
        finally:
            conn.close()

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_HEADERS)
        for machine in machines:
            checks = machine["checks"] or {}
            writer.writerow([
                machine["machine_id"],
                machine["os"],
                machine["arch"],
                machine["hostname"],
                machine["agent_version"],
                machine["last_seen"] or "",
                "1" if machine["heartbeat"] else "0",
            ] + [(checks.get(name) or {}).get("status") or "unknown" for name in CHECK_COLUMNS])

        output.seek(0)
        return StreamingResponse(output, media_type="text/csv", headers={"Content-Disposition": "attachment; filename=export.csv"})

    return app
