from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime


class CheckResult(BaseModel):
    status: Literal["ok", "issue", "unknown"]
    details: Dict[str, Any] = {}


class IngestReport(BaseModel):
    machine_id: str = Field(min_length=1)
    os: Optional[str] = None
    arch: Optional[str] = None
    hostname: Optional[str] = None
    agent_version: Optional[str] = None
    timestamp: Optional[str] = None # ISO8601 string
    heartbeat: bool = False
    checks: Dict[str, CheckResult]


class Machine(BaseModel):
    machine_id: str
    os: Optional[str] = None
    arch: Optional[str] = None
    hostname: Optional[str] = None
    agent_version: Optional[str] = None
    last_seen: Optional[datetime] = None
    heartbeat: bool = False
    checks: Optional[Dict[str, CheckResult]] = None
