import json
import sqlite3
from typing import List, Optional


def get_db_connection(db_path: str):
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables(db_path: str):
    conn = get_db_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS machines (
                machine_id TEXT PRIMARY KEY,
                os TEXT,
                arch TEXT,
                hostname TEXT,
                agent_version TEXT,
                last_seen TEXT,
                heartbeat INTEGER NOT NULL DEFAULT 0,
                last_payload JSON
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_machines_last_seen ON machines (last_seen)")
        conn.commit()
    finally:
        conn.close()


def upsert_machine(conn, record: dict):
    """
    Replaces the machine's current state in a single statement: last write wins.
    """
    conn.execute(
        """
        INSERT INTO machines (machine_id, os, arch, hostname, agent_version, last_seen, heartbeat, last_payload)
        VALUES (:machine_id, :os, :arch, :hostname, :agent_version, :last_seen, :heartbeat, :last_payload)
        ON CONFLICT (machine_id) DO UPDATE SET
            os = excluded.os,
            arch = excluded.arch,
            hostname = excluded.hostname,
            agent_version = excluded.agent_version,
            last_seen = excluded.last_seen,
            heartbeat = excluded.heartbeat,
            last_payload = excluded.last_payload
        """,
        {
            "machine_id": record["machine_id"],
            "os": record.get("os"),
            "arch": record.get("arch"),
            "hostname": record.get("hostname"),
            "agent_version": record.get("agent_version"),
            "last_seen": record.get("last_seen"),
            "heartbeat": 1 if record.get("heartbeat") else 0,
            "last_payload": json.dumps(record["last_payload"]),
        },
    )
    conn.commit()


def _row_to_dict(row) -> dict:
    payload = json.loads(row["last_payload"]) if row["last_payload"] else {}
    return {
        "machine_id": row["machine_id"],
        "os": row["os"],
        "arch": row["arch"],
        "hostname": row["hostname"],
        "agent_version": row["agent_version"],
        "last_seen": row["last_seen"],
        "heartbeat": bool(row["heartbeat"]),
        "checks": payload.get("checks"),
    }


def list_machines(conn) -> List[dict]:
    cursor = conn.execute(
        "SELECT machine_id, os, arch, hostname, agent_version, last_seen, heartbeat, last_payload "
        "FROM machines ORDER BY last_seen DESC"
    )
    return [_row_to_dict(row) for row in cursor.fetchall()]


def get_machine(conn, machine_id: str) -> Optional[dict]:
    cursor = conn.execute(
        "SELECT machine_id, os, arch, hostname, agent_version, last_seen, heartbeat, last_payload "
        "FROM machines WHERE machine_id = ?",
        (machine_id,),
    )
    row = cursor.fetchone()
    return _row_to_dict(row) if row else None
